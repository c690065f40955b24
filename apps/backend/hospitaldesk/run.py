import uvicorn
from .config import settings  # ensures .env is loaded


def main():
    print(f"🚀 Serving hospitals admin on port {settings.PORT} ({settings.ENV})")
    uvicorn.run(
        "hospitaldesk.main:app",
        host="0.0.0.0",
        port=settings.PORT,
        reload=(settings.ENV == "development"),
    )


if __name__ == "__main__":
    main()
