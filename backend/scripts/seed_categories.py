"""CLI script to create the default quiz categories.
Usage: python scripts/seed_categories.py [--name NAME ...]
"""
import sys
import argparse
import pathlib
from typing import List, Optional
# Ensure `backend/` is on sys.path so `quizbuilder` imports work when running this script directly
ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))
from sqlmodel import Session
from quizbuilder.database import engine, create_db_and_tables
from quizbuilder import models, repositories

DEFAULT_CATEGORIES = ["General Knowledge", "Science", "History", "Geography", "Technology", "Languages"]


def main(names: Optional[List[str]] = None):
    """Create missing categories; existing names are left untouched.

    Results are printed to stdout for a quick CLI feedback loop.
    """
    create_db_and_tables()
    names = names or DEFAULT_CATEGORIES
    created = 0
    with Session(engine) as session:
        repo = repositories.CategoryRepository(session)
        for name in names:
            name = name.strip()
            if not name:
                continue
            if repo.get_by_name(name):
                print(f'Skipped {name}: already exists')
                continue
            repo.create(models.Category(name=name))
            created += 1
            print(f'Created {name}')
    print(f'Total created categories: {created}')


if __name__ == '__main__':
    parser = argparse.ArgumentParser()
    parser.add_argument('--name', action='append', help='Category to create (repeatable); defaults to a built-in list')
    args = parser.parse_args()
    main(names=args.name)
