"""
Marketplace — Categories
Product categories with case-insensitive unique names and an optional hosted image.
"""
from fastapi import HTTPException

from marketplace.db import (
    get_db, save_db, find_by_id, new_id, stamp, record_activity, matches_search,
    sort_records, paginate
)
from marketplace.validation import clean_str
from marketplace import media

FOLDER = "categories"


def _name_taken(db: dict, name: str, exclude_id: str = None) -> bool:
    key = name.strip().lower()
    return any(c["name"].lower() == key and c["id"] != exclude_id for c in db["categories"])

def get_category(db: dict, category_id: str) -> dict:
    category = find_by_id(db["categories"], category_id)
    if not category:
        raise HTTPException(404, "Category not found")
    return category

def list_categories(page: int = 1, limit: int = 10, search: str = None) -> tuple:
    rows = [c for c in get_db()["categories"] if matches_search(c, search, ("name",))]
    return paginate(sort_records(rows, "createdAt", "desc"), page, limit)

async def create_category(name, description=None, image: tuple = None, actor: dict = None) -> dict:
    name = clean_str(name)
    if not name:
        raise HTTPException(400, "Category name is required")
    if _name_taken(get_db(), name):
        raise HTTPException(409, "Category already exists")
    hosted = await media.upload_image(*image, FOLDER) if image else None
    # another request may have claimed the name while the image was uploading
    db = get_db()
    if _name_taken(db, name):
        await media.delete_image((hosted or {}).get("public_id"))
        raise HTTPException(409, "Category already exists")
    category = stamp({"id": new_id(), "name": name, "description": clean_str(description),
                      "image": hosted})
    db["categories"].append(category)
    record_activity(db, "category_created", actor, {"categoryId": category["id"], "name": name})
    save_db(db)
    print(f"[Categories] Created {name}")
    return category

def _check_rename(db: dict, category: dict, name: str):
    if name and name.lower() != category["name"].lower() and _name_taken(db, name, category["id"]):
        raise HTTPException(409, "Category name already exists")

async def update_category(category_id: str, name=None, description=None, image: tuple = None,
                          actor: dict = None) -> dict:
    name = clean_str(name)
    db = get_db()
    _check_rename(db, get_category(db, category_id), name)
    hosted = await media.upload_image(*image, FOLDER) if image else None
    db = get_db()
    try:
        category = get_category(db, category_id)
        _check_rename(db, category, name)
    except HTTPException:
        await media.delete_image((hosted or {}).get("public_id"))
        raise
    old_image = (category.get("image") or {}).get("public_id") if hosted else None
    if hosted:
        category["image"] = hosted
    if name:
        category["name"] = name
    if description is not None:
        category["description"] = clean_str(description)
    stamp(category)
    record_activity(db, "category_updated", actor, {"categoryId": category_id})
    save_db(db)
    await media.delete_image(old_image)
    print(f"[Categories] Updated {category['name']}")
    return category

async def delete_category(category_id: str, actor: dict = None) -> dict:
    db = get_db()
    category = get_category(db, category_id)
    products = sum(1 for p in db["products"] if p.get("category") == category_id)
    vendors = sum(1 for v in db["vendors"] if category_id in (v.get("productCategory") or []))
    if products or vendors:
        raise HTTPException(409, f"Category is in use by {products} products and {vendors} vendors")
    db["categories"] = [c for c in db["categories"] if c["id"] != category_id]
    record_activity(db, "category_deleted", actor, {"categoryId": category_id, "name": category["name"]})
    save_db(db)
    await media.delete_image((category.get("image") or {}).get("public_id"))
    print(f"[Categories] Deleted {category['name']}")
    return category
