"""
Message delivery on top of the Telegram API client
"""

import re
import logging
from typing import Dict, List, Optional

from ..models import ApiResult
from .telegram_errors import TelegramError, is_markdown_parse_error, is_message_not_modified

MAX_TEXT_LENGTH = 3900


def strip_markdown(text) -> str:
    """Remove Markdown markers for the plain-text fallback"""
    return re.sub(r'[*_`\[\]]', '', str(text or ''))


def _truncation_marker(dropped: int) -> str:
    return f"\n\n[truncated {dropped} chars]"


def truncate_for_telegram(text, max_length: int = MAX_TEXT_LENGTH) -> str:
    """Cap text at max_length, reporting exactly how many chars were dropped"""
    value = str(text or '')
    if len(value) <= max_length:
        return value

    # The marker's own length depends on the digit count of the number it reports
    dropped = len(value) - max_length
    while True:
        keep = max(0, max_length - len(_truncation_marker(dropped)))
        actual = len(value) - keep
        if actual == dropped:
            break
        dropped = actual

    return value[:keep] + _truncation_marker(dropped)


def build_inline_keyboard(buttons: List[List[Dict]]) -> Dict:
    """Rows of {text, data} -> Telegram inline_keyboard markup"""
    return {
        'inline_keyboard': [
            [{'text': button['text'], 'callback_data': button['data']} for button in row]
            for row in buttons
        ]
    }


class TelegramMessenger:
    """Send/edit helpers with Markdown fallback and length capping"""

    def __init__(self, client, max_text_length: int = MAX_TEXT_LENGTH):
        self.client = client
        self.max_text_length = max_text_length
        self.logger = logging.getLogger('clankclaw')

    async def _safe_call(self, method: str, payload: Dict) -> ApiResult:
        try:
            return await self.client.call(method, payload)
        except TelegramError as e:
            self.logger.warning(f"Telegram {method} request error: {e}")
            return ApiResult.failure(str(e))

    async def send_message(self, chat_id, text: str, **options) -> ApiResult:
        """Send Markdown text, falling back once to plain text on a parse error"""
        safe_text = truncate_for_telegram(text, self.max_text_length)
        payload = {
            'chat_id': chat_id,
            'text': safe_text,
            'parse_mode': 'Markdown',
            'disable_web_page_preview': True,
            **options,
        }

        result = await self._safe_call('sendMessage', payload)
        if result.ok:
            return result
        if not is_markdown_parse_error(result):
            self.logger.warning(f"Telegram sendMessage failed: {result.description or 'unknown error'}")
            return result

        self.logger.warning("Markdown parsing failed, sending plain text")
        plain_payload = {**payload, 'text': strip_markdown(safe_text)}
        plain_payload.pop('parse_mode', None)
        return await self._safe_call('sendMessage', plain_payload)

    async def edit_message(self, chat_id, message_id: Optional[int], text: str) -> ApiResult:
        """Edit a message; "not modified" counts as success"""
        safe_text = truncate_for_telegram(text, self.max_text_length)
        if not message_id:
            return await self.send_message(chat_id, safe_text)

        result = await self._safe_call('editMessageText', {
            'chat_id': chat_id,
            'message_id': message_id,
            'text': safe_text,
            'parse_mode': 'Markdown',
        })
        if result.ok:
            return result
        if is_message_not_modified(result):
            return result.as_ok()

        if not is_markdown_parse_error(result):
            # Message deleted, too old, or the edit never reached Telegram
            self.logger.warning(f"Telegram editMessageText failed: {result.description or 'unknown error'}")
            return await self.send_message(chat_id, safe_text)

        plain_result = await self._safe_call('editMessageText', {
            'chat_id': chat_id,
            'message_id': message_id,
            'text': strip_markdown(safe_text),
        })
        if plain_result.ok:
            return plain_result
        if is_message_not_modified(plain_result):
            return plain_result.as_ok()

        self.logger.warning(f"Telegram plain editMessageText failed: {plain_result.description}")
        return await self.send_message(chat_id, safe_text)

    async def send_buttons(self, chat_id, text: str, buttons: List[List[Dict]]) -> ApiResult:
        """Send text with an inline keyboard"""
        keyboard = build_inline_keyboard(buttons)
        payload = {
            'chat_id': chat_id,
            'text': truncate_for_telegram(text, self.max_text_length),
            'parse_mode': 'Markdown',
            'disable_web_page_preview': True,
            'reply_markup': keyboard,
        }

        result = await self._safe_call('sendMessage', payload)
        if result.ok:
            return result
        if not is_markdown_parse_error(result):
            self.logger.warning(f"Telegram sendButtons failed: {result.description or 'unknown error'}")
            return result

        return await self._safe_call('sendMessage', {
            'chat_id': chat_id,
            'text': truncate_for_telegram(strip_markdown(text), self.max_text_length),
            'disable_web_page_preview': True,
            'reply_markup': keyboard,
        })

    async def get_file(self, file_id: str) -> Optional[str]:
        """Resolve a file_id to a download URL, or None"""
        try:
            result = await self.client.call('getFile', {'file_id': file_id})
        except TelegramError as e:
            self.logger.warning(f"Telegram getFile failed: {e}")
            return None

        if not result.ok or not isinstance(result.result, dict):
            return None
        file_path = result.result.get('file_path')
        if not file_path:
            return None
        return self.client.build_file_url(result.origin_used or self.client.active_origin, file_path)

    async def send_typing(self, chat_id):
        await self._safe_call('sendChatAction', {'chat_id': chat_id, 'action': 'typing'})

    async def delete_message(self, chat_id, message_id: Optional[int]):
        """Best effort: bots cannot always delete user messages"""
        if not chat_id or not message_id:
            return
        await self._safe_call('deleteMessage', {'chat_id': chat_id, 'message_id': message_id})

    async def answer_callback_query(self, callback_query_id: str):
        await self._safe_call('answerCallbackQuery', {'callback_query_id': callback_query_id})
