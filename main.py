from barbershop.api.admin.loyalty_scan import admin_loyalty_bp
from barbershop.api.booking.booking import booking_bp
from barbershop.api.booking.bookings import bookings_bp
from barbershop.api.loyalty.legacy import loyalty_bp
from barbershop.api.loyalty.rewards import rewards_bp
from barbershop.routes.auth import auth_bp
from flask import Flask, g, request
from flask_cors import CORS
from dotenv import load_dotenv
from flasgger import Swagger
from swagger__config import SWAGGER_CONFIG, SWAGGER_TEMPLATE
import logging
import os
import uuid

load_dotenv()
from barbershop.config import Config  # noqa: E402
from barbershop.errors import register_error_handlers  # noqa: E402
from barbershop.extensions import db  # noqa: E402
from barbershop.services.container import Services  # noqa: E402


def create_app(test_config=None, timify_transport=None, push_service=None):
    print("Starting create_app()")
    app = Flask(__name__)
    try:
        app.config.from_object(Config)
        if test_config:
            app.config.update(test_config)
        print(f"Config loaded: {len(app.config)} items")

        logging.basicConfig(
            level=app.config["LOG_LEVEL"],
            format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
        )
        app.logger.setLevel(app.config["LOG_LEVEL"])

        CORS(app)
        db.init_app(app)

        host = os.environ.get("API_HOST", "127.0.0.1:5000")
        swagger_template = SWAGGER_TEMPLATE.copy()
        swagger_template["host"] = host
        Swagger(app, config=SWAGGER_CONFIG, template=swagger_template)
        print("Swagger initialized - Access at /api/docs")

        app.extensions["barbershop"] = Services(
            app.config, timify_transport=timify_transport, push=push_service
        )
        register_error_handlers(app)

        @app.before_request
        def assign_request_id():
            g.request_id = request.headers.get("X-Request-ID") or f"req-{uuid.uuid4().hex[:12]}"

        @app.after_request
        def echo_request_id(response):
            request_id = getattr(g, "request_id", None)
            if request_id:
                response.headers["X-Request-ID"] = request_id
            return response

        blueprints = [
            auth_bp,
            booking_bp,
            bookings_bp,
            loyalty_bp,
            rewards_bp,
            admin_loyalty_bp,
        ]

        for bp in blueprints:
            app.register_blueprint(bp)
            print(f"  ✓ {bp.name} registered")

        @app.route("/")
        def home():
            """
            Root endpoint - API status
            ---
            tags:
              - Utility
            responses:
              200:
                description: API is running
            """
            return {"status": "ok", "message": "Backend is running!"}, 200

        if app.config.get("ENABLE_SCHEDULER") and not app.config.get("TESTING"):
            from barbershop.scheduler import init_scheduler

            init_scheduler(app)

    except Exception as e:
        print(f"Error during app creation: {e}")
        raise

    print(f"create_app() completed, {len(list(app.url_map.iter_rules()))} routes registered")
    return app


if __name__ == "__main__":
    # Create a .env containing:
    #       DATABASE_URL=mysql+pymysql://<USER>:<PASSWORD>@<HOST>:<PORT>/barbershop
    #       SECRET_KEY=...  QR_TOKEN_PEPPER=...
    app = create_app()
    port = int(os.environ.get("PORT", 5000))
    app.run(
        host="0.0.0.0", port=port, debug=os.environ.get("FLASK_ENV") != "production"
    )
