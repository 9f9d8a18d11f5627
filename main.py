from dotenv import load_dotenv

from corpus_engine.cli import app

load_dotenv()


if __name__ == "__main__":
    app()
