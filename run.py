"""Development entrypoint for the marketplace payments API."""

from dotenv import load_dotenv

load_dotenv()

from marketplace import create_app  # noqa: E402

app = create_app()

if __name__ == "__main__":
    app.run(debug=True, host="0.0.0.0", port=5001)
