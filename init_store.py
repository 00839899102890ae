import argparse
import asyncio
import sys

from bingoflash import config
from bingoflash.infra.sql import make_async_engine
from bingoflash.model.document import seed_document
from bingoflash.model.store import new_store


async def init_store(backend: str, path: str, database_url: str,
                     reset: bool) -> dict:
    engine = make_async_engine(database_url) if backend == "sql" else None
    store = new_store(path=path, engine=engine, backend=backend)
    try:
        if reset:
            await store.save(seed_document())
            print('✅ store reset to the seed document')
        async with store.snapshot() as doc:
            return {k: len(doc[k]) for k in ("events", "offers", "orders",
                                             "tickets")}
    finally:
        await store.close()


def main():
    ap = argparse.ArgumentParser(
        description="Create the document store (seeded) or reset it"
    )
    ap.add_argument(
        "--backend", choices=("file", "sql"), default=config.STORE_BACKEND,
        help="store backend (default: $STORE_BACKEND)"
    )
    ap.add_argument(
        "--path", default=config.DB_PATH,
        help="document path for the file backend (default: $DB_PATH)"
    )
    ap.add_argument(
        "--database-url", default=config.DATABASE_URL,
        help="database URL for the sql backend (default: $DATABASE_URL)"
    )
    ap.add_argument(
        "--reset", action="store_true",
        help="overwrite the current document with the seed"
    )
    args = ap.parse_args()

    if args.reset and sys.stdin.isatty():
        answer = input("This wipes all orders and tickets. Continue? [y/N] ")
        if answer.strip().lower() != "y":
            print("aborted")
            sys.exit(1)

    counts = asyncio.run(
        init_store(args.backend, args.path, args.database_url, args.reset)
    )
    where = args.path if args.backend == "file" else args.database_url
    print(f'✅ store ready at {where}')
    for k, n in counts.items():
        print(f'   - {k}: {n}')


if __name__ == '__main__':
    main()
