from __future__ import annotations

from html import escape

_STATUS_PAGE = """<!doctype html>
<html>
  <head>
    <title>Hydrate Backend</title>
    <meta name="viewport" content="width=device-width,initial-scale=1" />
    <style>
      body{{font-family:system-ui,Segoe UI,Roboto,Arial;margin:24px;background:#071021;color:#e6eef8}}
      a{{color:#9be7ff}}
      .box{{max-width:780px;padding:24px;border-radius:12px;background:#071a2b;}}
    </style>
  </head>
  <body>
    <div class="box">
      <h1>Hydrate Backend</h1>
      <p>Server is running. Available endpoints:</p>
      <ul>
        <li><a href="/subs" target="_blank">/subs</a> — subscription list (JSON)</li>
        <li><a href="/vapidPublicKey" target="_blank">/vapidPublicKey</a> — public VAPID key</li>
        <li>POST <code>/subscribe</code>, <code>/addReminder</code>, <code>/deleteReminder</code>, <code>/sendNotification</code></li>
        <li>GET <code>/user/:id/reminders</code> — reminders for a specific user</li>
        <li>GET <code>/health</code> — health check</li>
      </ul>
      <p>Frontend URL used in notifications: <code>{frontend_url}</code></p>
    </div>
  </body>
</html>
"""


def render_status_page(*, frontend_url: str) -> str:
    return _STATUS_PAGE.format(frontend_url=escape(frontend_url))
