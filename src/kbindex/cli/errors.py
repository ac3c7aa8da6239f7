"""kbindex rich error messages.

Every error shown to the user states what went wrong and the action that
fixes it.

Usage:
    from kbindex.cli.errors import err_no_db
    console.print(err_no_db(".kbindex.db"))
    raise typer.Exit(1)
"""

from __future__ import annotations


def err_no_api_key(provider: str) -> str:
    """No API key for *provider*.

    Example:
        No API key for 'openai'. Set:  export OPENAI_API_KEY=sk-...
    """
    env_map = {
        "openai": "OPENAI_API_KEY",
        "azure": "AZURE_API_KEY",
        "cohere": "COHERE_API_KEY",
        "gemini": "GEMINI_API_KEY",
        "mistral": "MISTRAL_API_KEY",
        "voyage": "VOYAGE_API_KEY",
    }
    env_var = env_map.get(provider.lower(), f"{provider.upper()}_API_KEY")
    return (
        f"[red]Error:[/] No API key for '{provider}'.\n"
        f"  Set:  export {env_var}=sk-..."
    )


def err_no_db(db_path: str = ".kbindex.db") -> str:
    return (
        f"[red]Error:[/] No database found at '{db_path}'.\n"
        "  Run:  kbindex init"
    )


def err_config(message: str) -> str:
    return f"[red]Error:[/] Invalid configuration.\n  {message}"


def err_sources_file(message: str) -> str:
    """A configured pages/catalog JSON file could not be loaded."""
    return (
        f"[red]Error:[/] {message}\n"
        "  Fix the file or clear sources.pages_file / sources.catalog_file in kbindex.yaml."
    )


def err_ssrf_blocked(url: str) -> str:
    """URL resolves to a private/reserved address."""
    return (
        f"[red]Error:[/] URL resolves to private address (SSRF protection): '{url}'\n"
        "  Use a publicly reachable URL, or set fetch.allow_private_hosts: true."
    )


def err_fetch(url: str, message: str) -> str:
    return (
        f"[red]Error:[/] Could not fetch '{url}'.\n"
        f"  {message}\n"
        "  Check the URL, or enqueue it with --queue to retry automatically."
    )


def err_indexing_failed(source: str, errors: list[str]) -> str:
    details = "\n".join(f"    - {e}" for e in errors[:5])
    more = f"\n    ... and {len(errors) - 5} more" if len(errors) > 5 else ""
    return (
        f"[red]Error:[/] No chunk of '{source}' could be indexed.\n"
        f"{details}{more}"
    )


def err_source_not_found(source: str) -> str:
    """Source not found in database."""
    return (
        f"[yellow]Source not found:[/] '{source}' is not in the knowledge base.\n"
        "  Run:  kbindex status  to see indexed sources."
    )


def err_no_catalog() -> str:
    return (
        "[red]Error:[/] No catalog configured.\n"
        "  Set sources.catalog_file in kbindex.yaml to a JSON list of catalog items."
    )
