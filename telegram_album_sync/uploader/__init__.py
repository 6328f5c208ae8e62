"""Telegram uploader modules."""

from telegram_album_sync.uploader.telegram_client import ApiResponse, Endpoint, TelegramClient

__all__ = ['ApiResponse', 'Endpoint', 'TelegramClient']
