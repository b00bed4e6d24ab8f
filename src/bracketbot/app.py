from __future__ import annotations

import signal

import typer

from bracketbot.config import get_settings
from bracketbot.core.logger import setup_logging, get_logger
from bracketbot.exchange.quoine_client import QuoineClient
from bracketbot.notify.line import make_notifier
from bracketbot.strategy.bracket_trader import BracketTrader

log = get_logger("bracketbot")
cli_app = typer.Typer(help="Bracket limit-order trading bot (Quoine + LINE notifications).")


@cli_app.command()
def run():
    """Run the trading loop until interrupted."""
    settings = None
    try:
        settings = get_settings()
        setup_logging(settings.log_level)
        settings.validate_quoine_credentials()
    except Exception as e:
        if settings is None:
            setup_logging("INFO")
        log.error(f"Configuration error: {e}")
        raise typer.Exit(code=1)

    log.info(f"Configuration loaded. Product={settings.product_id} Leverage={settings.leverage_level}")

    client = QuoineClient.from_settings(settings)
    notifier = make_notifier(settings)
    trader = BracketTrader(settings=settings, client=client, notifier=notifier)

    def _signal_handler(signum: int, frame) -> None:
        sig_name = signal.Signals(signum).name
        log.info(f"Received {sig_name}, initiating graceful shutdown...")
        trader.request_stop()

    signal.signal(signal.SIGTERM, _signal_handler)
    signal.signal(signal.SIGINT, _signal_handler)

    try:
        trader.run()
    except Exception:
        # Already logged, alerted and shut down by the trader
        raise typer.Exit(code=1)
    finally:
        client.close()
        notifier.close()

    log.info("Bot stopped.")


@cli_app.command()
def validate():
    """Validate configuration without starting the bot."""
    setup_logging("INFO")

    try:
        settings = get_settings()
        log.info("Configuration validation passed!")
        log.info(f"  Product: {settings.product_id} (leverage {settings.leverage_level}x, {settings.funding_currency})")
        log.info(f"  Bracket: buy x{settings.lower_margin}, sell x{settings.upper_margin}, qty {settings.order_quantity}")
        log.info(
            f"  Timing: fill wait {settings.fill_wait_seconds:.0f}s, close delay {settings.close_delay_seconds:.0f}s, "
            f"loss cooldown {settings.loss_cooldown_seconds:.0f}s"
        )

        settings.validate_quoine_credentials()
        log.info("  Quoine: credentials configured")

        try:
            settings.validate_line_credentials()
        except ValueError as e:
            log.info(f"  LINE: {e}, notifications go to the log")
        else:
            log.info("  LINE: configured")
            if not settings.line_channel_secret:
                log.warning("  LINE: LINE_CHANNEL_SECRET is not set")

    except Exception as e:
        log.error(f"Configuration validation failed: {e}")
        raise typer.Exit(code=1)


if __name__ == "__main__":
    cli_app()
