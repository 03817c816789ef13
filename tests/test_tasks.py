from datetime import timedelta

from codestakes import tasks
from codestakes.models.user import User
from codestakes.sessions import SqlSessionStore


def test_purge_expired_sessions_task(monkeypatch, session_factory):
    monkeypatch.setattr(tasks, "SessionLocal", session_factory)
    db = session_factory()
    user = User(username="carol", email="carol@x.com")
    db.add(user)
    db.commit()
    db.refresh(user)
    db.close()

    SqlSessionStore(session_factory, timedelta(seconds=-1)).save(user.id)
    live = SqlSessionStore(session_factory, timedelta(hours=1)).save(user.id)

    assert tasks.purge_expired_sessions() == 1
    assert tasks.purge_expired_sessions() == 0
    assert SqlSessionStore(session_factory, timedelta(hours=1)).load(live) == user.id
