"""
本地 Mock Supabase server（只覆盖 journal 闭环用到的接口）。

用途：
- 在没有真实 Supabase 项目的情况下，本地跑通：
  open session -> list entries -> sign URLs -> sweep / on-demand refresh -> create entry

启动：
  python -m parklog.dev.mock_supabase_server
然后：
  SUPABASE_URL=http://127.0.0.1:9003 SUPABASE_SERVICE_KEY=dev uvicorn parklog.main:create_app --factory
"""

from __future__ import annotations

import time
import uuid

import uvicorn
from fastapi import FastAPI
from fastapi import HTTPException
from fastapi import Request
from pydantic import BaseModel

from parklog.journal.models import JournalEntry


class SignRequest(BaseModel):
    expiresIn: int


def _default_entries() -> list[dict[str, object]]:
    return [
        {
            "id": "entry-1",
            "user_id": "demo-user",
            "park_id": "yose",
            "visit_date": "2024-06-01",
            "notes": "Half Dome at sunrise",
            "image_url": None,
            "image_path": "demo-user/yose/half-dome.jpg",
            "created_at": "2024-06-02T10:00:00Z",
        },
        {
            "id": "entry-2",
            "user_id": "demo-user",
            "park_id": "zion",
            "visit_date": "2024-05-10",
            "notes": "No photo this time",
            "image_url": None,
            "image_path": None,
            "created_at": "2024-05-11T09:00:00Z",
        },
    ]


app = FastAPI(title="Mock Supabase", version="0.1.0")

_entries: list[dict[str, object]] = _default_entries()
_objects: dict[str, bytes] = {"journal-images/demo-user/yose/half-dome.jpg": b"jpeg"}
_sign_calls: list[dict[str, object]] = []


@app.get("/rest/v1/journal_entries")
async def list_journal_entries(user_id: str = "", order: str = "visit_date.desc") -> list[dict[str, object]]:
    wanted = user_id.removeprefix("eq.")
    rows = [e for e in _entries if e["user_id"] == wanted]
    rows.sort(key=lambda e: str(e["visit_date"]), reverse=order.endswith(".desc"))
    return [JournalEntry.model_validate(e).model_dump() for e in rows]


@app.post("/rest/v1/journal_entries", status_code=201)
async def insert_journal_entry(request: Request) -> list[dict[str, object]]:
    body = await request.json()
    row = {
        "id": str(uuid.uuid4()),
        "created_at": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime()),
        **body,
    }
    _entries.append(row)
    return [JournalEntry.model_validate(row).model_dump()]


@app.post("/storage/v1/object/sign/{bucket}/{object_key:path}")
async def sign_object(bucket: str, object_key: str, req: SignRequest) -> dict[str, str]:
    _sign_calls.append({"bucket": bucket, "key": object_key, "expires_in": req.expiresIn, "at": int(time.time())})
    if f"{bucket}/{object_key}" not in _objects:
        raise HTTPException(status_code=400, detail={"statusCode": "404", "error": "not_found", "message": "Object not found"})
    token = uuid.uuid4().hex
    return {"signedURL": f"/object/sign/{bucket}/{object_key}?token={token}"}


@app.post("/storage/v1/object/{bucket}/{object_key:path}")
async def upload_object(bucket: str, object_key: str, request: Request) -> dict[str, str]:
    _objects[f"{bucket}/{object_key}"] = await request.body()
    return {"Key": f"{bucket}/{object_key}"}


@app.get("/__debug__/sign-calls")
async def debug_sign_calls() -> dict[str, object]:
    return {"count": len(_sign_calls), "calls": _sign_calls}


def main() -> None:
    uvicorn.run(app, host="127.0.0.1", port=9003)


if __name__ == "__main__":
    main()
