#!/usr/bin/env python3
"""
Gym CRM - Interactive Menu Launcher
Run this file to access all CRM commands through a simple menu.

Usage:
    python main.py
"""

import subprocess
import sys
import os

# Run the CLI module with the same interpreter (venv python)
PYTHON = sys.executable
CRM = [PYTHON, "-m", "gymcrm.cli.main"]

# Project root on PYTHONPATH so 'gymcrm' package is importable
ENV = os.environ.copy()
ENV["PYTHONPATH"] = os.path.dirname(os.path.abspath(__file__))


def run(args: list[str]):
    """Run a CRM CLI command and return to menu when done."""
    print()
    subprocess.run(CRM + args, env=ENV)
    print()
    input("  Press Enter to return to menu...")


def prompt(label: str, required: bool = True) -> str:
    """Prompt user for input. Returns empty string if optional and skipped."""
    while True:
        value = input(f"  {label}: ").strip()
        if value:
            return value
        if not required:
            return ""
        print("  (required - please enter a value)")


def prompt_optional(label: str) -> str:
    return prompt(f"{label} (optional, Enter to skip)", required=False)


def clear():
    os.system("cls" if os.name == "nt" else "clear")


# =============================================================================
# COMMAND HANDLERS
# =============================================================================

def customers_list():
    args = ["customers", "list"]
    t = prompt_optional("Filter by type (basic/pt)")
    n = prompt_optional("Filter by name")
    if t: args += ["--type", t]
    if n: args += ["--name", n]
    run(args)

def customers_show():
    cid = prompt("Customer ID")
    run(["customers", "show", cid])

def customers_add():
    run(["customers", "add"])

def customers_edit():
    cid = prompt("Customer ID")
    args = ["customers", "edit", cid]
    p = prompt_optional("New phone")
    e = prompt_optional("New email")
    d = prompt_optional("New session date (YYYY-MM-DD)")
    t = prompt_optional("New session time (HH:MM)")
    tr = prompt_optional("New trainer email")
    n = prompt_optional("New notes")
    if p: args += ["--phone", p]
    if e: args += ["--email", e]
    if d: args += ["--pt-date", d]
    if t: args += ["--pt-time", t]
    if tr: args += ["--trainer", tr]
    if n: args += ["--notes", n]
    run(args)

def customers_archive():
    cid = prompt("Customer ID")
    run(["customers", "archive", cid])

def customers_archived():
    run(["customers", "archived"])

def customers_restore():
    cid = prompt("Customer ID")
    run(["customers", "restore", cid])

def reminders_list():
    args = ["reminders", "list"]
    s = prompt_optional("Status (all/due/pending/completed, default: pending)")
    if s: args += ["--status", s]
    run(args)

def reminders_add():
    cid = prompt("Customer ID")
    run(["reminders", "add", cid])

def reminders_complete():
    rid = prompt("Reminder ID")
    run(["reminders", "complete", rid])

def trainers():
    run(["trainers"])

def check_all():
    run(["check", "all"])

def broadcast():
    message = prompt("Message ({name} is replaced per customer)")
    args = ["broadcast", "--message", message]
    t = prompt_optional("Audience (all/pt/basic, default: all)")
    if t: args += ["--type", t]
    run(args)

def scheduler():
    run(["scheduler"])


# =============================================================================
# MENU LAYOUT
# =============================================================================

MENU = [
    ("CUSTOMERS", [
        ("List customers",               customers_list),
        ("Show customer details",        customers_show),
        ("Add new customer",             customers_add),
        ("Edit / reschedule customer",   customers_edit),
        ("Archive customer",             customers_archive),
        ("Archived customers",           customers_archived),
        ("Restore customer",             customers_restore),
    ]),
    ("REMINDERS", [
        ("List reminders",               reminders_list),
        ("Add reminder",                 reminders_add),
        ("Complete reminder",            reminders_complete),
    ]),
    ("NOTIFICATIONS", [
        ("Trainers",                     trainers),
        ("Run all reminder checks now",  check_all),
        ("Broadcast WhatsApp message",   broadcast),
        ("Start reminder scheduler",     scheduler),
    ]),
]


def print_menu():
    clear()
    print("=" * 50)
    print("   GYM CRM - FRONT DESK")
    print("=" * 50)

    n = 1
    numbering = {}  # maps display number -> handler function

    for section, commands in MENU:
        print(f"\n  {section}")
        print(f"  {'-' * len(section)}")
        for label, handler in commands:
            print(f"  {n:>2}.  {label}")
            numbering[n] = handler
            n += 1

    print("\n" + "=" * 50)
    print("   0.  Exit")
    print("=" * 50)
    return numbering


def main():
    while True:
        numbering = print_menu()

        try:
            choice = input("\n  Select a command: ").strip()
        except (KeyboardInterrupt, EOFError):
            print("\n\n  Goodbye!\n")
            break

        if choice == "0" or choice.lower() in ("q", "quit", "exit"):
            print("\n  Goodbye!\n")
            break

        try:
            n = int(choice)
            if n in numbering:
                clear()
                numbering[n]()
            else:
                print(f"\n  Invalid selection: {choice}")
                input("  Press Enter to continue...")
        except ValueError:
            print(f"\n  Please enter a number.")
            input("  Press Enter to continue...")


if __name__ == "__main__":
    main()
