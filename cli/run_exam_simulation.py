import os
import time
import logging
import argparse

from rich.console import Console
from rich.table import Table

from exam_core import ExamEngineError, InvalidStateError, SessionState, build_graph
from exam_sync import (
    AttemptManager,
    HttpRemoteStore,
    InMemoryRemoteStore,
    LocalStore,
    SyncQueue,
    SyncSettings,
)

BASE_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
logging.basicConfig(level=logging.INFO, format="[%(asctime)s] %(levelname)s - %(message)s")

console = Console()

HELP = (
    "[dim]Nhập đáp án rồi Enter | n: câu sau | p: câu trước | g <số>: tới câu | "
    "f: gắn cờ | s: nộp module | x: nộp toàn bài | q: thoát (resume sau)[/dim]"
)


def banner():
    console.print("\n[bold cyan]╔══════════════════════════════════════════════╗[/bold cyan]")
    console.print("[bold cyan]║     🧠 Adaptive Exam — Multi-Module Runner     ║[/bold cyan]")
    console.print("[bold cyan]╚══════════════════════════════════════════════╝[/bold cyan]\n")


def build_manager(settings: SyncSettings):
    local = LocalStore(settings.db_path)
    if settings.remote_url:
        remote = HttpRemoteStore(settings.remote_url, settings.remote_token, settings.request_timeout)
    else:
        remote = InMemoryRemoteStore()
    queue = SyncQueue(remote, max_wait=settings.max_wait, poll_interval=settings.poll_interval)
    manager = AttemptManager(local, remote, queue, has_access=lambda user_id, test_id: True)
    local.purge_older_than(settings.snapshot_max_age)
    manager.requeue_pending()
    return manager, queue


def show_question(session):
    module = session.current_module
    view = session.view()
    question = module.questions[session.current_question]
    status = view.questions[session.current_question]

    mins, secs = divmod(int(view.time_remaining), 60)
    console.print(
        f"\n[bold blue]{module.name}[/bold blue] ({module.subject}, {module.difficulty}) "
        f"— Câu {session.current_question + 1}/{len(module.questions)} "
        f"— ⏱️ {mins:02d}:{secs:02d}" + (" 🚩" if status.flagged else "")
    )
    if module.passage and question.kind == "Paragraph":
        console.print(f"[italic]{module.passage.title}[/italic]\n{module.passage.content}\n")
    console.print(question.prompt)
    for opt in question.options:
        console.print(f"  [cyan]{opt.id}.[/cyan] {opt.text}")

    answer = session.answers.get(question.id)
    if answer is not None:
        console.print(f"[green]Đã trả lời:[/green] {answer.value}")


def show_result(result):
    table = Table(title="🏁 KẾT QUẢ BÀI THI")
    table.add_column("Module")
    table.add_column("Điểm", justify="right")
    table.add_column("Đúng", justify="right")
    table.add_column("Hết giờ")
    for r in result.modules:
        table.add_row(
            r.module_id,
            f"{r.score.total_points:g}/{r.score.max_points:g}",
            f"{r.score.correct_count}/{len(r.score.per_question)}",
            "✔" if r.timed_out else "",
        )
    console.print(table)
    console.print(
        f"[bold]Tổng:[/bold] {result.score:g}/{result.max_score:g} ({result.percentage}%) — "
        f"đúng {result.questions_correct}, sai {result.questions_incorrect}, bỏ qua {result.questions_skipped}"
    )


def run_exam(test_path: str, user_id: str, attempt_id=None):
    banner()
    settings = SyncSettings.from_env()
    graph = build_graph(test_path)
    manager, queue = build_manager(settings)
    queue.start()

    try:
        session = None
        if attempt_id:
            try:
                session = manager.resume_attempt(graph, attempt_id)
                console.print(f"[yellow]🔄 Tiếp tục attempt {attempt_id}[/yellow]")
            except InvalidStateError:
                session = None
        if session is None:
            session = manager.start_attempt(graph, user_id, attempt_id)
            console.print(f"[green]🚀 Bắt đầu attempt {session.attempt_id}[/green]")
        console.print(HELP)

        last = time.monotonic()
        while session.state not in (SessionState.SUBMITTED, SessionState.ABANDONED):
            if session.state == SessionState.IN_BREAK:
                console.print(
                    f"\n[magenta]☕ Giờ nghỉ {int(session.break_remaining)}s trước module "
                    f"{session.current_module_id}. Enter để tiếp tục.[/magenta]"
                )
                input()
                session.end_break()
                last = time.monotonic()
                continue

            show_question(session)
            raw = input("→ ").strip()

            now = time.monotonic()
            state = session.tick(now - last)
            last = now
            if state != SessionState.IN_MODULE:
                console.print("[red]⏱️ Hết giờ module, bài đã được tự động nộp.[/red]")
                continue

            try:
                cmd = raw.lower()
                if cmd == "q":
                    console.print(f"[yellow]Đã lưu. Chạy lại với --attempt {session.attempt_id} để tiếp tục.[/yellow]")
                    return session
                elif cmd == "n":
                    session.advance_question()
                elif cmd == "p":
                    session.previous_question()
                elif cmd.startswith("g "):
                    session.set_current_question(int(cmd[2:]) - 1)
                elif cmd == "f":
                    session.toggle_flag(session.current_question)
                elif cmd == "s":
                    session.finalize_module(session.current_module_id)
                elif cmd == "x":
                    session.submit()
                elif raw:
                    session.record_answer(session.current_question, raw)
                    session.advance_question()
            except (ExamEngineError, ValueError) as e:
                console.print(f"[yellow]⚠️ {e}[/yellow]")

        if session.result is not None:
            show_result(session.result)
        return session
    finally:
        queue.process_due()
        queue.stop()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Chạy một lượt thi thích ứng trên terminal")
    parser.add_argument("--test", default=os.path.join(BASE_DIR, "data", "sample_test.json"))
    parser.add_argument("--user", default="student-local")
    parser.add_argument("--attempt", default=None, help="attempt id để tiếp tục")
    args = parser.parse_args()
    run_exam(args.test, args.user, args.attempt)
