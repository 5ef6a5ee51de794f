"""
Console Output
==============
Colored terminal output shared by the CLI commands.

The exit code is the only machine-readable result; everything printed
here is for the operator.
"""

from typing import Any, Iterable

from colorama import init, Fore, Style

init(autoreset=True)


def print_header(text: str) -> None:
    """Print section header."""
    print(f"\n{Fore.CYAN}{Style.BRIGHT}{'=' * 60}")
    print(f"  {text}")
    print(f"{'=' * 60}{Style.RESET_ALL}\n")


def print_success(message: str) -> None:
    print(f"{Fore.GREEN}✅ {message}{Style.RESET_ALL}")


def print_error(message: str) -> None:
    print(f"{Fore.RED}❌ {message}{Style.RESET_ALL}")


def print_warning(message: str) -> None:
    print(f"{Fore.YELLOW}⚠️  {message}{Style.RESET_ALL}")


def print_info(message: str) -> None:
    print(f"{Fore.CYAN}💡 {message}{Style.RESET_ALL}")


def mark(ok: Any) -> str:
    """Checklist marker for a step result."""
    return "✅" if ok else "❌"


def print_checklist(title: str, items: Iterable[tuple]) -> None:
    """
    Print a titled ✅/❌ checklist.

    Args:
        title: Checklist heading
        items: (label, result) pairs
    """
    print(f"\n{Style.BRIGHT}📋 {title}:{Style.RESET_ALL}")
    for label, ok in items:
        print(f"   {label}: {mark(ok)}")
