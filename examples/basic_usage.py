#!/usr/bin/env python3
"""
Basic usage examples for the table entity store.

This example demonstrates:
1. Setting up configuration and key strategies
2. Staging entities in a session and committing them
3. Loading by either unique key and updating
4. Handling a concurrent change from another session
5. Partitioned entities, queries and load_all
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel

from table_entity_store import (
    AggregateCommitError,
    ConcurrencyError,
    EntityStore,
    PropertyKeyStrategy,
    StoreConfig,
)


class Organization(BaseModel):
    id: str
    external_id: str
    name: str
    employee_count: int = 0


class Employee(BaseModel):
    employee_id: str
    department: str
    name: str
    start_date: Optional[datetime] = None


async def main():
    """Demonstrate basic usage of sessions over the entity store."""
    logging.basicConfig(level=logging.INFO)

    # 1. Configure the store
    print("1. Setting up store configuration...")
    config = StoreConfig.from_env()  # Uses environment variables

    # For a local DynamoDB endpoint, you might use:
    # config = StoreConfig.for_local_development()

    by_id = PropertyKeyStrategy(Organization, "id")
    by_external_id = PropertyKeyStrategy(Organization, "external_id")
    by_department = PropertyKeyStrategy(Employee, "department", is_unique=False)
    store = EntityStore(config, [by_id, by_external_id, by_department])

    # 2. Stage and commit an organization (written under both unique keys)
    print("2. Creating organization...")
    session = store.open_session()
    session.store(Organization(id="org-1", external_id="crm-42", name="Acme", employee_count=12))
    written = await session.save_changes()
    print(f"Wrote {written} rows")

    # 3. Load through the external id and update
    print("3. Loading by external id and renaming...")
    session = store.open_session()
    org = await session.load(Organization, "crm-42", by_external_id)
    org.name = "Acme Corporation"
    await session.save_changes()
    print(f"Renamed organization {org.id}")

    # 4. Two sessions racing on the same organization
    print("4. Simulating a concurrent update...")
    mine = store.open_session()
    theirs = store.open_session()
    my_copy = await mine.load(Organization, "org-1")
    their_copy = await theirs.load(Organization, "org-1")

    their_copy.employee_count = 13
    await theirs.save_changes()

    my_copy.employee_count = 20
    try:
        await mine.save_changes()
    except AggregateCommitError as e:
        conflicts = [error for error in e.errors if isinstance(error, ConcurrencyError)]
        print(f"Detected {len(conflicts)} concurrent change(s); reload and retry")

    # 5. Partitioned entities
    print("5. Creating employees partitioned by department...")
    session = store.open_session()
    session.store(Employee(employee_id="e-1", department="Sales", name="Ada", start_date=datetime.now(timezone.utc)))
    session.store(Employee(employee_id="e-2", department="Sales", name="Grace"))
    session.store(Employee(employee_id="e-3", department="Engineering", name="Linus"))
    await session.save_changes()

    sales = await session.load_all(Employee, "Sales")
    print(f"Sales has {len(sales)} employees")

    async for employee in session.query(Employee).where(by_department, "Engineering"):
        print(f"Engineering: {employee.name}")

    print("\nExample completed!")


if __name__ == "__main__":
    asyncio.run(main())
