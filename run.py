import asyncio, dotenv

dotenv.load_dotenv()

if __name__ == "__main__":
    from anitrack.cli import main

    asyncio.run(main(["serve"]))
