from __future__ import annotations
from typing import Literal, Optional
from fastapi import APIRouter, Depends
from sqlmodel import Session, select

from .auth import current_user
from .db import get_session
from .errors import NotFoundError
from .models import NextDate, NoteItem, WireModel, utcnow

router = APIRouter(prefix="/api", tags=["notes"])

NEXT_DATE_ID = 1

class NoteAddIn(WireModel):
    text: str
    category: Literal["travel", "todo", "food"] = "todo"

class NoteIdIn(WireModel):
    note_id: int

class NoteOut(WireModel):
    id: int
    text: str
    done: bool
    category: str
    created_by: str
    created_at: str

class NextDateIn(WireModel):
    date: str
    title: str

def _note_out(n: NoteItem) -> dict:
    return NoteOut(id=n.id, text=n.text, done=n.done, category=n.category,
                   created_by=n.created_by, created_at=n.created_at.isoformat()).model_dump(by_alias=True)

def _get_note(session: Session, note_id: int) -> NoteItem:
    note = session.get(NoteItem, note_id)
    if not note:
        raise NotFoundError("Note not found")
    return note

# ==== notes / to-do ====
@router.get("/notes")
def list_notes(session: Session = Depends(get_session), user: str = Depends(current_user)):
    rows = session.exec(select(NoteItem).order_by(NoteItem.created_at.desc(), NoteItem.id.desc())).all()
    return {"ok": True, "notes": [_note_out(r) for r in rows]}

@router.post("/notes/add")
def add_note(payload: NoteAddIn, session: Session = Depends(get_session), user: str = Depends(current_user)):
    note = NoteItem(text=payload.text, category=payload.category, created_by=user)
    session.add(note); session.commit(); session.refresh(note)
    return {"ok": True, "note": _note_out(note)}

@router.post("/notes/toggle")
def toggle_note(payload: NoteIdIn, session: Session = Depends(get_session), user: str = Depends(current_user)):
    note = _get_note(session, payload.note_id)
    note.done = not note.done
    session.add(note); session.commit(); session.refresh(note)
    return {"ok": True, "note": _note_out(note)}

@router.post("/notes/delete")
def delete_note(payload: NoteIdIn, session: Session = Depends(get_session), user: str = Depends(current_user)):
    note = _get_note(session, payload.note_id)
    session.delete(note); session.commit()
    return {"ok": True}

# ==== next date countdown ====
@router.get("/next-date")
def get_next_date(session: Session = Depends(get_session), user: str = Depends(current_user)):
    row: Optional[NextDate] = session.get(NextDate, NEXT_DATE_ID)
    if not row:
        return {"ok": True, "nextDate": None}
    return {"ok": True, "nextDate": {"date": row.date, "title": row.title}}

@router.post("/next-date/set")
def set_next_date(payload: NextDateIn, session: Session = Depends(get_session), user: str = Depends(current_user)):
    row = session.get(NextDate, NEXT_DATE_ID)
    if row is None:
        row = NextDate(id=NEXT_DATE_ID, date=payload.date, title=payload.title)
    else:
        row.date, row.title, row.updated_at = payload.date, payload.title, utcnow()
    session.add(row); session.commit()
    return {"ok": True, "nextDate": {"date": row.date, "title": row.title}}

@router.post("/next-date/delete")
def delete_next_date(session: Session = Depends(get_session), user: str = Depends(current_user)):
    row = session.get(NextDate, NEXT_DATE_ID)
    if row:
        session.delete(row); session.commit()
    return {"ok": True}
