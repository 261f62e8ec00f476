from __future__ import annotations

import json
from html import escape
from typing import Iterable

from .session import SENDER_USER, ChatMessage


def render_chat_page(
    *,
    title: str,
    messages: Iterable[ChatMessage],
    pending: bool,
    failure_reply: str,
) -> str:
    messages_html = render_messages(messages, pending)
    disabled_attr = " disabled" if pending else ""
    button_label = "Sending..." if pending else "Send"
    script = _chat_script(failure_reply)
    return f"""<!DOCTYPE html>
<html lang="en">
<head>
  <meta charset="utf-8" />
  <meta name="viewport" content="width=device-width, initial-scale=1" />
  <title>{escape(title)}</title>
  <style>
    :root {{
      --bg: #fff;
      --border: #d1d5db;
      --accent: #3b82f6;
      --accent-hover: #2563eb;
      --ai-bg: #d1d5db;
      --muted: #6b7280;
      font-family: -apple-system, BlinkMacSystemFont, "Segoe UI", sans-serif;
    }}
    body {{
      margin: 0;
      min-height: 100vh;
      background: var(--bg);
      display: flex;
      flex-direction: column;
      align-items: center;
    }}
    h1 {{
      font-size: 1.5rem;
      font-style: italic;
      height: 50px;
      display: flex;
      align-items: center;
      justify-content: center;
      text-align: center;
      margin: 0.5rem 0;
    }}
    .chat {{
      width: 100%;
      max-width: 56rem;
      height: 80vh;
      display: flex;
      flex-direction: column;
      padding: 0.75rem;
      box-sizing: border-box;
      border-radius: 8px;
      box-shadow: 0 4px 12px rgba(0, 0, 0, 0.12);
    }}
    #messages {{
      flex: 1;
      overflow-y: auto;
      padding: 0.5rem;
      border: 1px solid var(--border);
      border-radius: 8px;
    }}
    .bubble {{
      width: fit-content;
      max-width: 70%;
      padding: 0.5rem 1rem;
      margin: 0.5rem 0;
      border-radius: 8px;
      box-shadow: 0 1px 3px rgba(0, 0, 0, 0.15);
      word-wrap: break-word;
      white-space: pre-wrap;
    }}
    .bubble.user {{
      background: var(--accent);
      color: #fff;
      margin-left: auto;
      text-align: end;
    }}
    .bubble.ai {{
      background: var(--ai-bg);
      color: #000;
      margin-right: auto;
    }}
    .typing {{
      color: var(--muted);
      margin: 0.5rem 0;
      animation: pulse 1.5s ease-in-out infinite;
    }}
    @keyframes pulse {{
      50% {{ opacity: 0.4; }}
    }}
    form.prompt {{
      display: flex;
      gap: 0.5rem;
      margin-top: 1rem;
    }}
    form.prompt input {{
      flex-grow: 1;
      padding: 0.5rem;
      border: 1px solid var(--border);
      border-radius: 6px;
    }}
    form.prompt button {{
      width: 6rem;
      padding: 0.5rem;
      border: none;
      border-radius: 6px;
      background: var(--accent);
      color: #fff;
      cursor: pointer;
    }}
    form.prompt button:hover {{
      background: var(--accent-hover);
    }}
    form.prompt button[disabled] {{
      opacity: 0.5;
      cursor: default;
    }}
  </style>
</head>
<body>
  <h1>{escape(title)}</h1>
  <section class="chat">
    <div id="messages" data-pending="{'true' if pending else 'false'}">{messages_html}</div>
    <form method="post" action="/send" class="prompt" id="prompt-form">
      <input type="text" name="message" placeholder="Type your message..." autocomplete="off"{disabled_attr} />
      <button type="submit"{disabled_attr}>{button_label}</button>
    </form>
  </section>
  {script}
</body>
</html>
"""


def render_messages(messages: Iterable[ChatMessage], pending: bool) -> str:
    rendered = [_render_message(message) for message in messages]
    if pending:
        rendered.append("<div class=\"typing\">🤖 Typing...</div>")
    return "\n".join(rendered)


def _render_message(message: ChatMessage) -> str:
    css_class = "user" if message.sender == SENDER_USER else "ai"
    return f"<div class=\"bubble {css_class}\">{escape(message.text)}</div>"


def _chat_script(failure_reply: str) -> str:
    failure_literal = json.dumps(failure_reply).replace("</", "<\\/")
    return """
    <script>
      (function(){
        const container = document.getElementById('messages');
        const form = document.getElementById('prompt-form');
        const input = form ? form.querySelector('input[name="message"]') : null;
        const button = form ? form.querySelector('button[type="submit"]') : null;
        const failureReply = __FAILURE_REPLY__;
        let loading = container && container.dataset.pending === 'true';

        function scrollToBottom() {
          if (container) {
            container.scrollTop = container.scrollHeight;
          }
        }

        function setLoading(value) {
          loading = value;
          if (input) { input.disabled = value; }
          if (button) {
            button.disabled = value;
            button.textContent = value ? 'Sending...' : 'Send';
          }
          if (container) { container.dataset.pending = value ? 'true' : 'false'; }
        }

        function appendBubble(text, sender) {
          if (!container) { return; }
          const bubble = document.createElement('div');
          bubble.className = 'bubble ' + sender;
          bubble.textContent = text;
          container.appendChild(bubble);
        }

        function showTyping() {
          if (!container) { return; }
          const typing = document.createElement('div');
          typing.className = 'typing';
          typing.textContent = '\\uD83E\\uDD16 Typing...';
          container.appendChild(typing);
        }

        if (container && typeof MutationObserver === 'function') {
          new MutationObserver(scrollToBottom).observe(container, { childList: true });
        }
        scrollToBottom();

        async function submitMessage() {
          if (loading || !input) { return; }
          const text = input.value;
          if (!text.trim()) { return; }
          appendBubble(text, 'user');
          input.value = '';
          showTyping();
          setLoading(true);
          try {
            const response = await fetch('/send', {
              method: 'POST',
              headers: { 'Content-Type': 'application/json', 'Accept': 'application/json' },
              body: JSON.stringify({ message: text })
            });
            const data = await response.json();
            if (data.messages_html !== undefined) {
              container.innerHTML = data.messages_html;
            } else {
              throw new Error(data.error || 'Request failed');
            }
          } catch (err) {
            console.error('Error:', err);
            const typing = container.querySelector('.typing');
            if (typing) { typing.remove(); }
            appendBubble(failureReply, 'ai');
          } finally {
            setLoading(false);
            scrollToBottom();
            if (input) { input.focus(); }
          }
        }

        if (form) {
          form.addEventListener('submit', function(event){
            if (typeof window.fetch !== 'function') {
              return;
            }
            event.preventDefault();
            submitMessage();
          });
        }
      })();
    </script>
    """.replace("__FAILURE_REPLY__", failure_literal)
