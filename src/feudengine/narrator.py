"""Terminal rendering of the board for interactive play."""

from typing import List, Optional

from rich.console import Console
from rich.errors import StyleSyntaxError
from rich.markup import escape
from rich.panel import Panel
from rich.style import Style
from rich.table import Table
from rich.text import Text

from .core.fsm import GameState, RoundHistoryEntry
from .core.schemas import GamePhase
from .core.validation import AnswerResolution

console = Console()


def _team_style(color: str) -> Style:
    """Parse a stored team color, ignoring values rich cannot render."""
    try:
        return Style.parse(color)
    except StyleSyntaxError:
        return Style.null()


class BoardNarrator:
    """Prints the scoreboard, the board and the outcome of each guess."""

    def __init__(self, out: Optional[Console] = None):
        self.console = out or console

    def divider(self, title: str = "") -> None:
        if title:
            self.console.rule(f"[bold]{title}[/bold]")
        else:
            self.console.rule()

    def scoreboard(self, state: GameState) -> None:
        table = Table(show_header=True, header_style="bold cyan")
        table.add_column("Team", width=20)
        table.add_column("Score", justify="right", width=8)
        for index, team in enumerate(state.teams):
            marker = " *" if index == state.active_team_index and state.phase is not GamePhase.RESULTS else ""
            table.add_row(Text.assemble((team.name, _team_style(team.color)), marker), str(team.score))
        self.console.print(table)

    def board(self, state: GameState) -> None:
        question, round_state = state.current_question, state.round
        if question is None or round_state is None:
            self.console.print("[dim]No question on the board.[/dim]")
            return

        table = Table(show_header=False, box=None, padding=(0, 2))
        table.add_column("#", style="dim", width=3)
        table.add_column("Answer", width=28)
        table.add_column("Points", justify="right", width=6)
        for index, answer in enumerate(question.answers):
            if round_state.revealed[index]:
                table.add_row(str(index + 1), f"[bold]{answer.text.upper()}[/bold]", str(answer.points))
            else:
                table.add_row(str(index + 1), "[dim]" + "_" * 12 + "[/dim]", "")

        strikes = "[red]X[/red] " * round_state.strikes
        subtitle = f"Pot: {round_state.round_pot}   Strikes: {strikes or '-'}"
        self.console.print(Panel(table, title=question.question, subtitle=subtitle))
        if state.phase is GamePhase.STEAL and state.steal_original_team_index is not None:
            self.console.print(f"[bold magenta]STEAL![/bold magenta] {escape(state.active_team.name)} gets one guess.")

    def verdict(self, resolution: AnswerResolution) -> None:
        if resolution.busy:
            self.console.print("[yellow]Still judging the previous answer...[/yellow]")
        elif resolution.matched:
            confidence = f" ({resolution.confidence:.0%})" if resolution.confidence is not None else ""
            self.console.print(
                f"[green]Survey says: {resolution.matched_answer} for {resolution.points}![/green]{confidence}"
            )
        else:
            self.console.print("[red]X  Not on the board.[/red]")
        if resolution.timed_out:
            self.console.print("[dim]Validation timed out, continuing.[/dim]")

    def round_result(self, state: GameState) -> None:
        if state.round_winner is None:
            self.console.print("[dim]Nobody banked points this round.[/dim]")
        else:
            winner = state.teams[state.round_winner]
            self.console.print(f"[bold green]{escape(winner.name)} takes the round![/bold green]")

    def history(self, entries: List[RoundHistoryEntry], state: GameState) -> None:
        if not entries:
            return
        table = Table(show_header=True, header_style="bold cyan", title="Rounds")
        table.add_column("Question")
        table.add_column("Winner", width=16)
        table.add_column("Points", justify="right", width=7)
        for entry in entries:
            winner = state.teams[entry.winning_team].name if entry.winning_team is not None else "-"
            table.add_row(entry.question, winner, str(entry.awarded_points))
        self.console.print(table)

    def game_over(self, state: GameState) -> None:
        self.divider("GAME OVER")
        self.scoreboard(state)
        first, second = state.teams
        if first.score == second.score:
            self.console.print("[bold]It's a tie![/bold]")
        else:
            winner = first if first.score > second.score else second
            self.console.print(f"[bold green]{escape(winner.name)} wins![/bold green]")
        self.history(state.history, state)
