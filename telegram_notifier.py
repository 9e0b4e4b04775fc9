"""
Telegram Notifier - New pair alerts
Dispatch alerts to Telegram with:
- HTML formatting (names/symbols escaped)
- Relative launch time
- Low-liquidity warning
- Chart / explorer / pair links
"""
import html
import logging
import time
from typing import Optional

from telegram import Bot
from telegram.error import TelegramError

from pair_screener.models import TokenPair

logger = logging.getLogger(__name__)

EXPLORERS = {
    'solana': ('Solscan Explorer', 'https://solscan.io/token/{address}'),
    'ethereum': ('Etherscan', 'https://etherscan.io/token/{address}'),
    'base': ('BaseScan', 'https://basescan.org/token/{address}'),
    'bsc': ('BscScan', 'https://bscscan.com/token/{address}'),
}


def format_relative_time(created_at: float, now: float) -> str:
    """Format relative time (e.g. "5 minutes ago", "2 hours ago")."""
    seconds = int(now - created_at)
    minutes = seconds // 60
    hours = minutes // 60
    days = hours // 24

    if days > 0:
        return f"{days} day{'s' if days > 1 else ''} ago"
    if hours > 0:
        return f"{hours} hour{'s' if hours > 1 else ''} ago"
    if minutes > 0:
        return f"{minutes} minute{'s' if minutes > 1 else ''} ago"
    return "Just now"


def format_price(price: float) -> str:
    """Format price with precision that fits its magnitude."""
    if price < 0.000001:
        return f"{price:.4e}"
    if price < 0.01:
        return f"{price:.8f}"
    if price < 1:
        return f"{price:.6f}"
    return f"{price:.4f}"


def format_number(num: float) -> str:
    """Format numbers with K/M/B suffixes."""
    if num >= 1e9:
        return f"{num / 1e9:.2f}B"
    if num >= 1e6:
        return f"{num / 1e6:.2f}M"
    if num >= 1e3:
        return f"{num / 1e3:.2f}K"
    return f"{num:.2f}"


class TelegramNotifier:
    """
    Sends one HTML message per new pair.

    send_pair_alert() never raises for Telegram failures; it returns False so
    the poll cycle can count the failure and move on to the next pair.
    """

    def __init__(self, bot_token: str, chat_id: str, min_liquidity_usd: float = 500):
        self.bot_token = bot_token
        self.chat_id = chat_id
        self.min_liquidity_usd = min_liquidity_usd
        self.bot = Bot(token=bot_token)

    def format_pair_message(self, pair: TokenPair, index: int = 0, now: Optional[float] = None) -> str:
        """Format pair information into a readable HTML message."""
        now = time.time() if now is None else now
        chain_name = pair.chain.capitalize()
        position = f" #{index + 1}" if index > 0 else ""

        lines = [
            f"🚀 <b>New {html.escape(chain_name)} Token Detected!{position}</b>",
            "",
            f"<b>💎 Token:</b> {html.escape(pair.name)} ({html.escape(pair.symbol)})",
            f"<b>📝 Contract:</b> <code>{html.escape(pair.id)}</code>",
            "",
        ]

        if pair.created_at is not None:
            lines.append(f"<b>🕐 Launched:</b> {format_relative_time(pair.created_at, now)}")

        if pair.price_usd:
            lines.append(f"<b>💵 Price:</b> ${format_price(pair.price_usd)}")

        if pair.liquidity_usd:
            low_liquidity = pair.liquidity_usd < self.min_liquidity_usd * 2
            warning = " ⚠️" if low_liquidity else ""
            lines.append(f"<b>💧 Liquidity:</b> ${format_number(pair.liquidity_usd)}{warning}")
            if low_liquidity:
                lines.append("<i>⚠️ Low liquidity - Trade with caution!</i>")

        if pair.fdv:
            lines.append(f"<b>📊 Market Cap:</b> ${format_number(pair.fdv)}")

        lines.append("")
        lines.append("<b>🔗 Links:</b>")
        if pair.url:
            lines.append(f'• <a href="{html.escape(pair.url)}">DexScreener Chart</a>')
        explorer = EXPLORERS.get(pair.chain)
        if explorer:
            label, template = explorer
            lines.append(f'• <a href="{template.format(address=pair.id)}">{label}</a>')
        if pair.pair_address:
            lines.append(
                f'• <a href="https://dexscreener.com/{pair.chain}/{pair.pair_address}">Trading Pair</a>'
            )

        return "\n".join(lines)

    async def send_pair_alert(self, pair: TokenPair, index: int = 0) -> bool:
        """Format and send one pair alert. Returns True on success."""
        try:
            message = self.format_pair_message(pair, index)
            await self.bot.send_message(
                chat_id=self.chat_id,
                text=message,
                parse_mode='HTML',
            )
            logger.info(f"✅ Sent alert for token: {pair.symbol}")
            return True
        except TelegramError as e:
            logger.error(f"Failed to send Telegram message for {pair.symbol}: {e}")
            return False
        except Exception as e:
            logger.error(f"Unexpected error sending alert for {pair.symbol}: {e}")
            return False

    async def test_connection(self) -> bool:
        """Check the bot token by calling getMe."""
        try:
            await self.bot.initialize()
            me = await self.bot.get_me()
            logger.info(f"✅ Connected to Telegram as @{me.username}")
            return True
        except TelegramError as e:
            logger.error(f"Failed to connect to Telegram: {e}")
            return False

    async def close(self):
        try:
            await self.bot.shutdown()
        except TelegramError as e:
            logger.warning(f"Telegram shutdown error: {e}")
