"""
REAL DYNAPLAN INTEGRATION TEST
Runs against DynamoDB (or DynamoDB Local via DYNAMODB_ENDPOINT_URL)
"""

import uuid

from dynaplan import IndexSpec, Repository, Settings, TableAlteration, TableSpec


# ---------------------------------
# MAIN TEST
# ---------------------------------

def main():

    settings = Settings.from_env()
    repo = Repository(settings)

    suffix = str(uuid.uuid4())[:8]
    person = f"dynaplan_test_person_{suffix}"
    pages = f"dynaplan_test_page_{suffix}"

    print("Endpoint:", settings.endpoint_url or "default")

    # -------------------
    # Schema
    # -------------------
    print("\n--- SCHEMA TEST ---")

    repo.schema.create_table(
        TableSpec(person)
        .add("id", "string", primary_key=True)
        .add("email", "string")
        .add_global_index(IndexSpec("email", ["email"])),
        wait=True,
    )
    repo.schema.create_table(
        TableSpec(pages)
        .add("id", "string", primary_key=True)
        .add("page_num", "integer", range_key=True),
        wait=True,
    )
    print("Create OK")

    try:
        # -------------------
        # Reads and writes
        # -------------------
        print("\n--- ITEM TEST ---")

        repo.insert(person, {"id": "p1", "email": "ada@example.com", "name": "Ada"})
        assert repo.get(person, {"id": "p1"})["name"] == "Ada"
        assert [p["id"] for p in repo.all(person, {"email": "ada@example.com"})] == ["p1"]
        print("Point get / index query OK")

        for n in range(1, 6):
            repo.insert(pages, {"id": "b1", "page_num": n})
        found = repo.all(pages, {"id": "b1"}, scan_limit=2, query_info_key="pages")
        assert [p["page_num"] for p in found] == [1, 2, 3, 4, 5]
        assert repo.take_query_info("pages").count == 5
        print("Paged query OK")

        assert repo.update_all(pages, {"id": "b1"}, {"read": True}) == 5
        assert repo.delete_all(pages, {"id": "b1"}) == 5
        print("Bulk update / delete OK")

        # -------------------
        # Index changes
        # -------------------
        print("\n--- ALTER TEST ---")

        repo.schema.alter_table(person, TableAlteration().add("name").create_index(IndexSpec("name", ["name"])))
        assert repo.plan(person, {"name": "Ada"}).index_name == "name"
        print("Alter OK")
    finally:
        repo.schema.drop_table_if_exists(person)
        repo.schema.drop_table_if_exists(pages)
        print("Drop OK")

    print("\nALL TESTS PASSED 🎉")


if __name__ == "__main__":
    main()
