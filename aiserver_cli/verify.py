"""HTTP verification of a provisioned server."""

import time
from typing import Optional, Tuple

import requests

from .ui.display import console

SERVER_INDEX_TEXT = "Welcome to the AI Server on Raspberry Pi 4!"
EDGE_INDEX_TEXT = "AI inference server running"

EXPECTED_TEXT = {
    "server": SERVER_INDEX_TEXT,
    "edge": EDGE_INDEX_TEXT,
}


def verify_web_access(
    url: str,
    expected_text: Optional[str] = None,
    timeout: int = 60,
    interval: int = 5
) -> Tuple[bool, str]:
    """
    Poll a URL until it answers with status 200 (and the expected text).

    Args:
        url: URL to request
        expected_text: Text the response body must contain
        timeout: Total time budget in seconds, request time included
        interval: Delay between attempts in seconds

    Returns:
        Tuple of (success, message)
    """
    deadline = time.monotonic() + timeout
    attempt = 0

    while True:
        attempt += 1
        remaining = deadline - time.monotonic()
        try:
            response = requests.get(url, timeout=min(5, max(1, remaining)))
            if response.status_code == 200:
                if expected_text is None or expected_text in response.text:
                    return True, f"✓ Server accessible at {url} (Status: {response.status_code})"
                console.print(f"[yellow]Attempt {attempt}: {url} answered without the expected text[/yellow]")
            else:
                console.print(f"[yellow]Attempt {attempt}: {url} returned {response.status_code}[/yellow]")

        except requests.exceptions.ConnectionError:
            console.print(f"[yellow]Attempt {attempt}: {url} - Connection refused[/yellow]")
        except requests.exceptions.Timeout:
            console.print(f"[yellow]Attempt {attempt}: {url} - Timeout[/yellow]")
        except requests.exceptions.RequestException as e:
            console.print(f"[yellow]Attempt {attempt}: {url} - {e}[/yellow]")

        if time.monotonic() + interval >= deadline:
            break
        time.sleep(interval)

    return False, f"✗ Could not reach {url} after {timeout} seconds"
