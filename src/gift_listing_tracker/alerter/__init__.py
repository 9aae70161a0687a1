"""Alert formatting and Telegram delivery."""
