import asyncio
import random
from pathlib import Path

import streamlit as st

import engine_log
from book_registry import BookRegistry
from config import load_config
from game_state import GameProgressState, attach_content, record_puzzle_completion
from grid_engine import ContentError, get_story_part_name, initialize_puzzle, render_preview_ascii
from match_verifier import check_match, check_win_condition, mark_word_found, select_line
from puzzle_loader import load_all_puzzles
from puzzle_selector import initialize_puzzle_selection, select_genre, select_next_puzzle
from save_storage import JsonFileStore
from save_system import SaveSystem

HERE = Path(__file__).parent
DATA_DIR = HERE / "data"
CONFIG_PATH = HERE / "kethaneum.json"
SAVE_PATH = HERE / "save" / "progress.json"


def _ui_log(msg: str) -> None:
    st.session_state.setdefault("log_lines", []).append(msg)


def _boot():
    """Load config, registry, content and the saved game once per session."""
    if "engine" in st.session_state:
        return st.session_state["engine"]

    cfg = load_config(str(CONFIG_PATH))
    registry = BookRegistry(path=str(DATA_DIR / "bookRegistry.json"))
    SAVE_PATH.parent.mkdir(parents=True, exist_ok=True)
    saves = SaveSystem(JsonFileStore(str(SAVE_PATH)), registry)

    loaded = asyncio.run(saves.load_progress())
    if not loaded.success:
        st.warning(f"Could not load saved progress: {loaded.error}")
    if loaded.was_migrated:
        st.info("Saved progress was upgraded to the compact format.")

    puzzles, _ = load_all_puzzles(str(DATA_DIR))
    state = attach_content(loaded.data or GameProgressState(), puzzles)

    seed = cfg.puzzle.seed
    rng = random.Random(seed if seed is not None else None)
    state = initialize_puzzle_selection(state, cfg.selection, rng)

    st.session_state["engine"] = {
        "cfg": cfg,
        "saves": saves,
        "rng": rng,
    }
    st.session_state["state"] = state
    st.session_state["active"] = None
    return st.session_state["engine"]


engine_log.set_logger(_ui_log)

st.set_page_config(page_title="Kethaneum", layout="wide")
st.title("Kethaneum - Word Search")

eng = _boot()
cfg, saves, rng = eng["cfg"], eng["saves"], eng["rng"]
state: GameProgressState = st.session_state["state"]


# --- Controls in the sidebar ---
with st.sidebar:
    tab_play, tab_save = st.tabs(["Play", "Save"])

    with tab_play:
        genres = sorted(g for g in state.puzzles if g != cfg.selection.kethaneum_genre_name)
        if not genres:
            st.error("No puzzle content found in data/.")
            st.stop()
        current = state.selected_genre if state.selected_genre in genres else genres[0]
        genre = st.selectbox("Genre", genres, index=genres.index(current))

        st.caption(
            f"Puzzles completed: {state.completed_puzzles} | "
            f"Books discovered: {state.completed_books}"
        )
        go = st.button("Next puzzle", type="primary", use_container_width=True)

    with tab_save:
        info = saves.get_save_system_info()
        st.caption(f"Save version: {info['version']} | {info['storage_size']} bytes")
        if st.button("Restore migration backup", disabled=not info["has_backup"]):
            if saves.rollback_to_backup():
                st.session_state.pop("engine", None)
                st.rerun()
        if st.button("Clear all progress"):
            saves.clear_all_progress()
            st.session_state.pop("engine", None)
            st.rerun()


if go:
    if genre != state.selected_genre:
        state = select_genre(state, genre, cfg.selection, rng)

    sel = select_next_puzzle(state, cfg.selection, rng)
    if sel.puzzle is None:
        st.error(sel.message or "No puzzle available.")
        st.stop()
    if sel.message:
        st.info(sel.message)

    try:
        active, state = initialize_puzzle(sel.puzzle, cfg.puzzle, sel.new_state, rng)
    except ContentError as e:
        st.error("Puzzle content could not be placed in the grid")
        st.exception(e)
        st.stop()

    st.session_state["state"] = state
    st.session_state["active"] = active


active = st.session_state.get("active")
if active is None:
    st.info('Pick a genre and press "Next puzzle".')
else:
    p = active.definition
    st.subheader(p.title)
    st.caption(f"{p.book} | {get_story_part_name(p.story_part)} | {p.genre}")
    if state.game_mode == "beat-the-clock":
        st.caption(f"Time limit: {cfg.puzzle.time_limit}s")
    if p.story_excerpt:
        st.markdown(f"> {p.story_excerpt}")

    col_grid, col_words = st.columns([3, 1])
    with col_grid:
        st.code(render_preview_ascii(active.grid), language=None)

        n = len(active.grid)
        r1c1, r1c2, r1c3, r1c4 = st.columns(4)
        with r1c1:
            sr = st.number_input("Start row", 0, n - 1, 0, format="%d")
        with r1c2:
            sc = st.number_input("Start col", 0, n - 1, 0, format="%d")
        with r1c3:
            er = st.number_input("End row", 0, n - 1, 0, format="%d")
        with r1c4:
            ec = st.number_input("End col", 0, n - 1, 0, format="%d")

        if st.button("Check word"):
            cells = select_line(active.grid, (int(sr), int(sc)), (int(er), int(ec)))
            result = check_match(cells, active.placements, cfg.puzzle.min_word_length)
            if not result.found:
                st.warning("No word there.")
            else:
                active.placements, all_found = mark_word_found(active.placements, result.placement)
                st.success(f"Found {result.placement.word}!")
                if all_found:
                    state = record_puzzle_completion(st.session_state["state"], p)
                    st.session_state["state"] = state
                    try:
                        asyncio.run(saves.save_progress(state))
                    except (OSError, ValueError) as e:
                        st.error("Progress could not be saved")
                        st.exception(e)
                    st.balloons()

    with col_words:
        for wp in active.placements:
            st.markdown(f"~~{wp.word}~~" if wp.found else wp.word)
        if check_win_condition(active.placements):
            st.success("Puzzle complete.")


with st.expander("Engine log"):
    st.text("\n".join(st.session_state.get("log_lines", [])[-50:]))
