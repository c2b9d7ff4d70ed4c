from __future__ import annotations

import threading
from dataclasses import dataclass, field
from pathlib import Path
from urllib.parse import quote

from fastapi import Body, FastAPI, HTTPException
from fastapi.responses import HTMLResponse, JSONResponse, Response

from .config import ReaderConfig
from .errors import InvalidPackage, describe_package_error
from .export import export_filename, export_package
from .navigator import ChapterNavigator
from .package import PackageSession, SessionManager
from .resources import ResourceHandle
from .text import convert_to_bionic


@dataclass(slots=True)
class WebConfig:
    epub: Path | None = None
    reader: ReaderConfig = field(default_factory=ReaderConfig)


INDEX_HTML = """<!DOCTYPE html>
<html lang="en">
<head>
  <meta charset="utf-8">
  <title>Bionic Reader</title>
  <meta name="viewport" content="width=device-width, initial-scale=1">
  <style>
    body { margin: 0 auto; max-width: 44rem; padding: 1.5rem; font-family: Georgia, serif; background: #faf6f0; color: #3d2914; }
    header { display: flex; gap: 0.6rem; align-items: center; flex-wrap: wrap; }
    header h1 { font-size: 1.2rem; margin: 0 auto 0 0; }
    #chapter { line-height: 1.7; white-space: normal; }
    #chapter img { max-width: 100%; }
    .muted { color: #6b5b4d; font-size: 0.9rem; }
  </style>
</head>
<body>
  <header>
    <h1 id="title">Bionic Reader</h1>
    <input id="file" type="file" accept=".epub">
    <button id="prev">&larr;</button>
    <select id="toc"></select>
    <button id="next">&rarr;</button>
    <a id="export" href="/api/export">Export</a>
  </header>
  <p id="status" class="muted"></p>
  <main id="chapter"></main>
  <script>
    const $ = (id) => document.getElementById(id);
    async function call(method, url, body, type) {
      const init = { method };
      if (body !== undefined) {
        init.body = type ? body : JSON.stringify(body);
        init.headers = { "Content-Type": type || "application/json" };
      }
      const res = await fetch(url, init);
      const payload = await res.json();
      if (!res.ok) throw new Error(payload.detail || res.statusText);
      return payload;
    }
    function showChapter(payload) {
      $("chapter").innerHTML = payload.markup;
      $("toc").value = String(payload.current);
      $("status").textContent = `${payload.current + 1} / ${payload.total}`;
      window.scrollTo(0, 0);
    }
    async function loadBook() {
      const book = await call("GET", "/api/book");
      $("title").textContent = book.title;
      const toc = $("toc");
      toc.replaceChildren(...book.chapters.map((ch) => {
        const option = document.createElement("option");
        option.value = String(ch.position);
        option.textContent = ch.title;
        return option;
      }));
      showChapter(await call("GET", "/api/chapter"));
    }
    async function navigate(action, index) {
      showChapter(await call("POST", "/api/navigate", { action, index }));
    }
    $("prev").onclick = () => navigate("previous");
    $("next").onclick = () => navigate("next");
    $("toc").onchange = (ev) => navigate("jump", Number(ev.target.value));
    $("file").onchange = async (ev) => {
      const file = ev.target.files[0];
      if (!file) return;
      $("status").textContent = "Loading…";
      try {
        await call("POST", "/api/book", await file.arrayBuffer(), "application/epub+zip");
        await loadBook();
      } catch (err) {
        $("status").textContent = err.message;
      }
    };
    loadBook().catch(() => { $("status").textContent = "Open an EPUB to start reading."; });
  </script>
</body>
</html>
"""


def _resource_url(handle: ResourceHandle) -> str:
    return f"/api/resources/{handle.id}"


def _content_disposition(filename: str) -> str:
    ascii_name = filename.encode("ascii", "replace").decode("ascii").replace("?", "_")
    return f"attachment; filename=\"{ascii_name}\"; filename*=UTF-8''{quote(filename)}"


def create_app(config: WebConfig) -> FastAPI:
    manager = SessionManager(config.reader)
    if config.epub is not None:
        epub_path = config.epub.expanduser().resolve()
        if not epub_path.exists():
            raise FileNotFoundError(f"EPUB not found: {epub_path}")
        manager.open(epub_path.read_bytes(), source_name=epub_path.name)

    app = FastAPI(title="Bionic Reader")
    app.state.config = config
    app.state.sessions = manager
    state_lock = threading.Lock()
    navigators: dict[int, ChapterNavigator] = {}

    def _session() -> PackageSession:
        session = manager.current
        if session is None:
            raise HTTPException(status_code=404, detail="No book is open.")
        return session

    def _navigator(session: PackageSession) -> ChapterNavigator:
        navigator = navigators.get(id(session))
        if navigator is None or navigator.session is not session:
            navigators.clear()
            navigator = ChapterNavigator(
                session,
                _resource_url,
                style=config.reader.style,
                memoize=config.reader.memoize,
            )
            navigators[id(session)] = navigator
        return navigator

    def _book_payload(session: PackageSession, navigator: ChapterNavigator) -> dict[str, object]:
        return {
            "title": session.title,
            "authors": session.authors,
            "language": session.language,
            "chapters": [
                {"position": position, "index": chapter.index, "title": chapter.title}
                for position, chapter in enumerate(session.chapters)
            ],
            "current": navigator.current_index,
            "export_name": export_filename(session.title),
        }

    def _chapter_payload(navigator: ChapterNavigator) -> dict[str, object]:
        chapter = navigator.current_chapter
        return {
            "current": navigator.current_index,
            "total": len(navigator),
            "title": chapter.title,
            "index": chapter.index,
            "markup": navigator.current_markup,
            "has_next": navigator.has_next,
            "has_previous": navigator.has_previous,
        }

    @app.get("/", response_class=HTMLResponse)
    def index() -> str:
        return INDEX_HTML

    @app.post("/api/text")
    def api_text(payload: dict = Body(...)) -> JSONResponse:
        text = payload.get("text") if isinstance(payload, dict) else None
        if not isinstance(text, str):
            raise HTTPException(status_code=400, detail="text must be a string.")
        return JSONResponse({"markup": convert_to_bionic(text, config.reader.style)})

    @app.post("/api/book")
    def api_open_book(payload: bytes = Body(..., media_type="application/epub+zip")) -> JSONResponse:
        if not payload:
            raise HTTPException(status_code=400, detail="Request body is empty.")
        with state_lock:
            try:
                session = manager.open(payload)
            except InvalidPackage as exc:
                status = 422 if exc.is_empty else 400
                raise HTTPException(status_code=status, detail=describe_package_error(exc)) from exc
            navigators.clear()
            return JSONResponse(_book_payload(session, _navigator(session)))

    @app.get("/api/book")
    def api_book() -> JSONResponse:
        with state_lock:
            session = _session()
            return JSONResponse(_book_payload(session, _navigator(session)))

    @app.delete("/api/book")
    def api_close_book() -> JSONResponse:
        with state_lock:
            closed = manager.current is not None
            manager.close()
            navigators.clear()
        return JSONResponse({"closed": closed})

    @app.get("/api/chapter")
    def api_chapter() -> JSONResponse:
        with state_lock:
            navigator = _navigator(_session())
            return JSONResponse(_chapter_payload(navigator))

    @app.post("/api/navigate")
    def api_navigate(payload: dict = Body(...)) -> JSONResponse:
        if not isinstance(payload, dict):
            raise HTTPException(status_code=400, detail="Invalid payload.")
        action = payload.get("action")
        with state_lock:
            navigator = _navigator(_session())
            if action == "next":
                navigator.next()
            elif action == "previous":
                navigator.previous()
            elif action == "jump":
                index = payload.get("index")
                if not isinstance(index, int) or isinstance(index, bool):
                    raise HTTPException(status_code=400, detail="index must be an integer.")
                navigator.jump_to(index)
            else:
                raise HTTPException(status_code=400, detail="action must be next, previous or jump.")
            return JSONResponse(_chapter_payload(navigator))

    @app.get("/api/resources/{resource_id}")
    def api_resource(resource_id: str) -> Response:
        with state_lock:
            handle = _session().resources.by_id(resource_id)
            if handle is None or handle.released:
                raise HTTPException(status_code=404, detail="Resource not found")
            return Response(content=handle.data, media_type=handle.media_type)

    @app.get("/api/export")
    def api_export() -> Response:
        with state_lock:
            session = _session()
            data = export_package(session)
            filename = export_filename(session.title)
        return Response(
            content=data,
            media_type="application/epub+zip",
            headers={"Content-Disposition": _content_disposition(filename)},
        )

    return app
