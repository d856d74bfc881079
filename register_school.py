import argparse
import asyncio
import sys

from school_inspection_backend.configuration import build_database_settings
from school_inspection_backend.database import Database, UserRegistry
from school_inspection_backend.errors import ConfigurationError


async def register(udise_code: str, school_name: str | None) -> int:
    try:
        settings = build_database_settings()
    except ConfigurationError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    database = Database(settings.url, echo=settings.echo)
    registry = UserRegistry(database)
    try:
        existing = await registry.find_by_udise_code(udise_code)
        if existing is not None:
            print(f"UDISE code {udise_code} is already registered (id {existing.id})")
            return 0
        record = await registry.register(udise_code, school_name=school_name)
    except ValueError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    finally:
        await database.dispose()

    print(f"Registered UDISE code {record.udise_code} (id {record.id})")
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        description="Register a school so it can submit inspections. Only DATABASE_URL is required."
    )
    parser.add_argument("udise_code", help="UDISE code of the school (6 or more digits)")
    parser.add_argument("--school-name", default=None, help="Optional school name stored with the user")
    args = parser.parse_args(argv)
    return asyncio.run(register(args.udise_code, args.school_name))


if __name__ == "__main__":
    sys.exit(main())
