"""Application entry point for the cleaning dashboard web UI."""

from cleandash.config import configure_logging
from cleandash.webapp import create_app

configure_logging()
app = create_app()


if __name__ == "__main__":
    app.run(debug=True)
