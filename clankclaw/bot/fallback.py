"""
Guidance for chat input the conversation engine did not understand
"""

import re

from ..models import Session

RESET_WORDS = ('reset', 'restart', 'start over', 'clear', 'stop')

GENERIC_HELP = """👋 *I am your Deployment Agent.*

Here is how I can help:

⚡ *Fast:* `/go PEPE "Pepe Token" 10%`
📝 *Guided:* `/deploy`
🎭 *Stealth:* `/spoof 0x...`
❓ *Help:* `/help`

_Just send me a link, image, or describe your token!_"""


async def handle_fallback(chat_id, text: str, session: Session, messenger, reset_session):
    """Reply with the most useful hint for unrecognized text"""
    lower = (text or '').lower()

    if any(word in lower for word in RESET_WORDS):
        reset_session(chat_id)
        return await messenger.send_message(chat_id, '🔄 Session reset. Ready for new deployment.')

    if session.state.startswith('wizard_'):
        step = session.state[len('wizard_'):]
        return await messenger.send_message(
            chat_id,
            f"🤔 I didn't understand that for *{step}*.\n\n"
            f"• Type the value (e.g. \"PEPE\" or \"10%\")\n"
            f"• Or type `/cancel` to stop"
        )

    token = session.token
    if token.name or token.symbol or token.image or token.context:
        missing = []
        if not token.name:
            missing.append('name')
        if not token.symbol:
            missing.append('symbol')
        if not token.image:
            missing.append('image')
        if not token.context:
            missing.append('context link')

        return await messenger.send_message(
            chat_id,
            f"📝 *Current Session:* {token.symbol or 'New Token'}\n\n"
            f"❌ Missing: {', '.join(missing) or 'nothing'}\n\n"
            f"💡 *Tip:* You can send:\n"
            f"• Image file\n"
            f"• Tweet/Cast link\n"
            f"• \"Name\"\n"
            f"• \"Symbol\"\n"
            f"• \"10%\" (fees)\n\n"
            f"Or type `/cancel` to start over."
        )

    match = re.match(r'^[A-Z0-9]{2,10}$', (text or '').strip())
    if match:
        symbol = match.group(0)
        return await messenger.send_message(
            chat_id,
            f"🤔 Did you mean to deploy *{symbol}*?\n\n"
            f"Type: `/go {symbol} \"Name\" 5%`\n"
            f"Or start wizard: `/deploy`"
        )

    return await messenger.send_message(chat_id, GENERIC_HELP)
