"""Container health probe: exits 0 when the server answers GET / with 200."""

import os
import sys

import requests


def check(url: str, timeout: float = 3.0) -> bool:
    try:
        response = requests.get(url, timeout=timeout)
    except requests.exceptions.RequestException:
        return False
    return response.status_code == 200


def main() -> None:
    if len(sys.argv) > 1:
        url = sys.argv[1]
    else:
        url = f"http://localhost:{os.getenv('PORT', '8080')}/"
    sys.exit(0 if check(url) else 1)


if __name__ == "__main__":
    main()
