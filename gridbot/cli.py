"""CLI tool for admin operations.

Usage:
    python -m gridbot.cli create-bot
    python -m gridbot.cli encrypt
    python -m gridbot.cli genkey
"""

import sys
import getpass

from gridbot.database import create_db_and_tables
from gridbot.models import Bot
from gridbot.services.bot_store import BotStore
from gridbot.services.encryption import encrypt, generate_key
from gridbot.utils.constants import VALID_MODES, BotMode


def _ask_float(prompt: str, default: float | None = None) -> float | None:
    suffix = f" [{default}]" if default is not None else ""
    raw = input(f"{prompt}{suffix}: ").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        print(f"Not a number: {raw}")
        sys.exit(1)


def create_bot():
    """Create a bot interactively. Credentials are encrypted before storage."""
    create_db_and_tables()

    symbol = input("Symbol (e.g. BTC/USDT): ").strip().upper()
    if "/" not in symbol:
        print("Symbol must look like BTC/USDT.")
        sys.exit(1)

    name = input(f"Name [{symbol} grid]: ").strip() or f"{symbol} grid"
    mode = (input("Mode (DEMO/REAL) [DEMO]: ").strip() or BotMode.DEMO).upper()
    if mode not in VALID_MODES:
        print(f"Mode must be one of: {', '.join(VALID_MODES)}")
        sys.exit(1)

    capital = _ask_float("Capital")
    if not capital or capital <= 0:
        print("Capital must be positive.")
        sys.exit(1)

    bot = Bot(
        name=name,
        symbol=symbol,
        mode=mode,
        capital=capital,
        buy_percentage=_ask_float("Buy percentage", 10.0),
        buy_drop_percent=_ask_float("Buy drop percent", 1.0),
        sell_profit_percent=_ask_float("Sell profit percent", 1.0),
        stop_loss_percent=_ask_float("Stop-loss percent (blank = off)"),
        take_profit_percent=_ask_float("Take-profit percent (blank = off)"),
        trailing_stop_percent=_ask_float("Trailing-stop percent (blank = off)"),
        max_daily_loss=_ask_float("Max daily loss (blank = off)"),
    )

    api_key = getpass.getpass("API key (blank for public data only): ").strip()
    if api_key:
        api_secret = getpass.getpass("API secret: ").strip()
        if not api_secret:
            print("API secret cannot be empty when an API key is given.")
            sys.exit(1)
        bot.api_key_encrypted = encrypt(api_key)
        bot.api_secret_encrypted = encrypt(api_secret)
    elif mode == BotMode.REAL:
        print("REAL mode requires API credentials.")
        sys.exit(1)

    bot = BotStore().create_bot(bot)
    print(f"\nBot '{bot.name}' created with id {bot.id} ({bot.mode}, {bot.symbol}).")


def encrypt_value():
    """Encrypt a secret with the configured key and print the ciphertext."""
    value = getpass.getpass("Value to encrypt: ")
    if not value:
        print("Value cannot be empty.")
        sys.exit(1)
    print(encrypt(value))


def main():
    commands = {
        "create-bot": create_bot,
        "encrypt": encrypt_value,
        "genkey": lambda: print(generate_key()),
    }
    if len(sys.argv) < 2:
        print("Usage: python -m gridbot.cli <command>")
        print(f"Commands: {', '.join(commands)}")
        sys.exit(1)

    command = commands.get(sys.argv[1])
    if command is None:
        print(f"Unknown command: {sys.argv[1]}")
        sys.exit(1)
    command()


if __name__ == "__main__":
    main()
