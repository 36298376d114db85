"""
WhatsApp Command Bot - Flask Webhook Server

The WhatsApp bridge POSTs inbound message events here. The bot's asyncio
loop runs in a background thread; Flask handlers hand events over to it
without waiting for the commands to finish.
"""

import asyncio
import atexit
import json
import logging
import threading
from typing import Any, List, Optional

from flask import Flask, jsonify, request

from wabot import __version__
from wabot.bot import WhatsAppBot
from wabot.config import DEBUG_WEBHOOKS, WEBHOOK_SECRET_TOKEN, BotSettings

logger = logging.getLogger(__name__)


class WebhookServerError(Exception):
    """Raised when webhook server operations fail."""

    pass


class AsyncLoopManager:
    """Runs an asyncio event loop in a background thread."""

    def __init__(self):
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._thread: Optional[threading.Thread] = None

    @property
    def is_running(self) -> bool:
        return self._loop is not None and self._loop.is_running()

    def start(self) -> asyncio.AbstractEventLoop:
        """Start the loop thread if it is not running yet."""
        if self._loop is None or self._loop.is_closed():
            self._loop = asyncio.new_event_loop()
            self._thread = threading.Thread(
                target=self._loop.run_forever, name="bot-loop", daemon=True
            )
            self._thread.start()
            logger.info("✅ Bot event loop started")
        return self._loop

    def run(self, coro, timeout: Optional[float] = None) -> Any:
        """Run a coroutine on the loop and wait for its result."""
        if self._loop is None:
            raise WebhookServerError("Event loop is not running")
        return asyncio.run_coroutine_threadsafe(coro, self._loop).result(timeout)

    def call_soon(self, callback, *args) -> None:
        """Schedule a plain callback on the loop from another thread."""
        if self._loop is None:
            raise WebhookServerError("Event loop is not running")
        self._loop.call_soon_threadsafe(callback, *args)

    def stop(self) -> None:
        """Stop and close the loop."""
        if self._loop is None:
            return
        self._loop.call_soon_threadsafe(self._loop.stop)
        if self._thread:
            self._thread.join(timeout=5)
        if not self._loop.is_running():
            self._loop.close()
        self._loop = None
        self._thread = None


def extract_events(payload: Any) -> List[Any]:
    """
    Pull message events out of a webhook body.

    Accepts a single event, a list of events, or {"messages": [...]}.
    """
    if isinstance(payload, list):
        return payload
    if isinstance(payload, dict):
        messages = payload.get("messages")
        if isinstance(messages, list):
            return messages
        return [payload]
    return []


def create_flask_app(
    bot: WhatsAppBot,
    loop_manager: Optional[AsyncLoopManager] = None,
    secret_token: Optional[str] = WEBHOOK_SECRET_TOKEN,
) -> Flask:
    """
    Create Flask application using factory pattern.

    Args:
        bot: The started bot
        loop_manager: Loop the bot runs on
        secret_token: Expected X-Webhook-Token header value, if any

    Returns:
        Configured Flask application
    """
    app = Flask(__name__)

    register_routes(app, bot, loop_manager, secret_token)
    register_error_handlers(app)

    logger.info("✅ Flask webhook server initialized")
    return app


def register_routes(
    app: Flask,
    bot: WhatsAppBot,
    loop_manager: Optional[AsyncLoopManager],
    secret_token: Optional[str],
) -> None:
    """
    Register all webhook routes.

    Args:
        app: Flask application instance
    """

    @app.route("/whatsapp-webhook", methods=["POST"])
    def whatsapp_webhook():
        """
        Handle inbound message events from the bridge.

        Returns:
            JSON response with status
        """
        if loop_manager is None or not loop_manager.is_running:
            logger.error("Bot event loop not running")
            return jsonify({"error": "Bot service unavailable"}), 503

        # Verify webhook secret token if configured
        if secret_token:
            auth_header = request.headers.get("X-Webhook-Token")
            if auth_header != secret_token:
                logger.warning(f"Invalid webhook token from {request.remote_addr}")
                return jsonify({"error": "Unauthorized"}), 403

        payload = request.get_json(force=True, silent=True)
        if not payload:
            logger.error("Empty or invalid webhook payload received")
            return jsonify({"error": "Invalid payload"}), 400

        if DEBUG_WEBHOOKS:
            logger.debug(f"Webhook data: {json.dumps(payload, indent=2, default=str)}")

        events = extract_events(payload)
        try:
            for event in events:
                loop_manager.call_soon(bot.submit_event, event)
        except Exception as e:
            logger.error(f"Failed to queue events: {e}")
            return jsonify({"error": "Event processing failed"}), 500

        logger.debug(f"📥 Queued {len(events)} event(s)")
        return jsonify({"status": "ok", "queued": len(events)}), 200

    @app.route("/", methods=["GET"])
    def root():
        """Simple root endpoint for basic connectivity test."""
        return jsonify({"status": "ok", "service": bot.settings.bot_name, "version": __version__})

    @app.route("/health", methods=["GET"])
    def health_check():
        """
        Health check endpoint for monitoring.

        Returns:
            JSON response with health status
        """
        health_status = {
            "status": "healthy",
            "service": bot.settings.bot_name,
            "components": {},
        }

        if bot.is_started and loop_manager is not None and loop_manager.is_running:
            health_status["components"]["bot"] = "running"
        else:
            health_status["components"]["bot"] = "not_started"
            health_status["status"] = "degraded"

        health_status["components"]["permission_store"] = (
            "loaded" if bot.store.is_loaded else "not_loaded"
        )
        health_status["components"]["bridge"] = (
            "configured" if bot.settings.bridge_url else "not_configured"
        )
        health_status["components"]["commands"] = len(bot.registry)

        # Always return 200 for basic health check
        return jsonify(health_status), 200

    @app.route("/status", methods=["GET"])
    def status():
        """Dispatch counters and plugin status."""
        return jsonify({
            "stats": bot.stats(),
            "plugins": bot.plugin_manager.get_plugin_status(),
        }), 200


def register_error_handlers(app: Flask) -> None:
    """
    Register Flask error handlers.

    Args:
        app: Flask application instance
    """

    @app.errorhandler(404)
    def not_found(error):
        logger.warning(f"404 Not Found: {request.url}")
        return jsonify({"error": "Endpoint not found"}), 404

    @app.errorhandler(405)
    def method_not_allowed(error):
        logger.warning(f"405 Method Not Allowed: {request.method} {request.url}")
        return jsonify({"error": "Method not allowed"}), 405

    @app.errorhandler(500)
    def internal_error(error):
        logger.error(f"500 Internal Server Error: {error}")
        return jsonify({"error": "Internal server error"}), 500

    @app.errorhandler(Exception)
    def handle_exception(e):
        """Handle all unhandled exceptions."""
        logger.error(f"Unhandled exception: {e}", exc_info=True)
        return jsonify({"error": "An unexpected error occurred"}), 500


# =============================================================================
# APPLICATION STARTUP
# =============================================================================

loop_manager = AsyncLoopManager()


def create_app(settings: Optional[BotSettings] = None) -> Flask:
    """
    Start the bot on the background loop and build the Flask app.

    Gunicorn entry point: "wabot.webhook_server:create_app()".
    """
    bot = WhatsAppBot(settings)

    loop_manager.start()
    report = loop_manager.run(bot.start())
    logger.info(f"🔌 Plugins: {report.summary()}")

    def shutdown_bot() -> None:
        try:
            loop_manager.run(bot.shutdown(), timeout=bot.settings.handler_timeout)
        except Exception as e:
            logger.error(f"Error shutting down bot: {e}")
        finally:
            loop_manager.stop()

    atexit.register(shutdown_bot)

    return create_flask_app(bot, loop_manager)


def main() -> None:
    """
    Development server entry point.
    For production, use Gunicorn instead.
    """
    from wabot.config import FLASK_DEBUG, PORT

    logger.info("🚀 Starting WhatsApp Command Bot Webhook Server")
    logger.info(f"Debug mode: {FLASK_DEBUG}")
    logger.info(f"Port: {PORT}")

    if FLASK_DEBUG:
        logger.warning("⚠️ Running in DEBUG mode - not suitable for production!")

    app = create_app()
    try:
        app.run(
            host="0.0.0.0",
            port=PORT,
            debug=FLASK_DEBUG,
            use_reloader=False,  # the reloader would start a second bot loop
        )
    except Exception as e:
        logger.error(f"Failed to start webhook server: {e}")
        raise


if __name__ == "__main__":
    main()
