# example_usage.py
"""
Complete dynaplan usage example, runnable against the in-memory store
"""

from dynaplan import (
    IndexSpec,
    PredicateBuilder,
    Repository,
    ScanNotAllowedError,
    Settings,
    TableSpec,
)
from dynaplan.models import StoreBackend


# 1. Initialize repository (Settings.from_env() reads DYNAPLAN_* and .env)
repo = Repository(Settings(
    store=StoreBackend.MEMORY,
    cached_tables=frozenset({"country"}),
))


# 2. Create tables
repo.schema.create_table(
    TableSpec("person")
    .add("id", "string", primary_key=True)
    .add("email", "string")
    .add_global_index(IndexSpec("email", ["email"]))
)
repo.schema.create_table(
    TableSpec("book_page")
    .add("id", "string", primary_key=True)
    .add("page_num", "integer", range_key=True)
)
repo.schema.create_table(TableSpec("country").add("code", "string", primary_key=True))


# 3. Inserts (an existing key raises unless on_conflict is given)
repo.insert("person", {"id": "p1", "email": "ada@example.com", "name": "Ada"})
repo.insert("person", {"id": "p2", "email": "bob@example.com", "name": "Bob"})
repo.insert("person", {"id": "p1", "email": "dup@example.com"}, on_conflict="nothing")
for n in range(1, 11):
    repo.insert("book_page", {"id": "b1", "page_num": n, "text": f"page {n}"})
repo.insert_all("country", [{"code": "FR"}, {"code": "DE"}])


# 4. Plans: point get, secondary index query, batch get
print(repo.plan("person", {"id": "p1"}))
print(repo.plan("person", {"email": "bob@example.com"}))
print(repo.plan("person", [("id", "in", ["p2", "p1"])]))

ada = repo.get("person", {"id": "p1"})
bob = repo.all("person", {"email": "bob@example.com"})
both = repo.all("person", [("id", "in", ["p2", "p1"])])


# 5. Range conditions and order
middle = repo.all("book_page", {"id": "b1", "page_num__between": (3, 6)})
latest = repo.all("book_page", PredicateBuilder().eq("id", "b1").order(descending=True), scan_limit=3, page_limit=1)


# 6. Pagination with query info
repo.all("book_page", {"id": "b1"}, scan_limit=4, page_limit=1, query_info_key="first_page")
info = repo.take_query_info("first_page")
print(f"count={info.count} scanned={info.scanned_count} next={info.last_evaluated_key}")
rest = repo.all("book_page", {"id": "b1"}, exclusive_start_key=info.last_evaluated_key)


# 7. Lazy streaming
for page in repo.stream("book_page", {"id": "b1"}, scan_limit=2):
    print(page["page_num"])


# 8. Scans must be allowed per call, per table, or globally
try:
    repo.all("person", {"name": "Ada"})
except ScanNotAllowedError as e:
    print(e)
named = repo.all("person", {"name": "Ada"}, scan=True)


# 9. Cached scans (country is in cached_tables)
countries = repo.all("country", scan=True)
repo.insert("country", {"code": "IT"})
stale = repo.all("country", scan=True)
fresh = repo.all("country", scan=True, no_cache=True)


# 10. Updates (update directives alongside plain changes)
repo.update("person", {"id": "p1"}, {"name": "Ada L."}, push={"tags": ["math"]})
repo.update("person", {"id": "p2"}, {"name": None}, remove_nil_fields=True)


# 11. Bulk updates and deletes (read then write one key at a time)
repo.update_all("book_page", {"id": "b1", "page_num__between": (1, 5)}, {"read": True})
repo.delete_all("book_page", {"id": "b1"})


# 12. Deletes
repo.delete("person", {"id": "p2"})
