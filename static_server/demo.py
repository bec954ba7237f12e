#!/usr/bin/env python3
"""
Live walkthrough of the server's behaviour against a running instance.

    python -m static_server.demo [base_url]
"""

import sys
from urllib.parse import urlsplit

import requests

from .client import raw_request


def run_demo(base_url: str) -> None:
    base_url = base_url.rstrip("/")
    parts = urlsplit(base_url)
    host, port = parts.hostname, parts.port or 80

    print("Static HTTP Server - feature demonstration")
    print("=" * 60)

    print("\nServe HTML with the right MIME type")
    html = requests.get(f"{base_url}/", timeout=5)
    print(f"   Status: {html.status_code}")
    print(f"   Content-Type: {html.headers.get('Content-Type')}")
    print(f"   Content-Length: {html.headers.get('Content-Length')} bytes")

    print("\nCaching headers")
    print(f"   Cache-Control: {html.headers.get('Cache-Control')}")
    print(f"   Last-Modified: {html.headers.get('Last-Modified')}")

    print("\nConditional request (If-Modified-Since)")
    cached = requests.get(f"{base_url}/", headers={"If-Modified-Since": html.headers.get("Last-Modified", "")}, timeout=5)
    print(f"   Status: {cached.status_code} (Not Modified)")
    print(f"   Body length: {len(cached.content)} bytes")

    print("\nHEAD support")
    head = requests.head(f"{base_url}/", timeout=5)
    print(f"   Status: {head.status_code}")
    print(f"   Content-Length: {head.headers.get('Content-Length')} bytes")
    print(f"   Body length: {len(head.content)} bytes (headers only)")

    print("\nDirectory traversal protection")
    # requests would collapse the "..", so send the target verbatim
    attack = raw_request(host, port, "GET", "/../etc/passwd")
    print(f"   Status: {attack.status} (Forbidden)")

    print("\n404 for missing files")
    missing = requests.get(f"{base_url}/does-not-exist.html", timeout=5)
    print(f"   Status: {missing.status_code} (Not Found)")

    print("\n405 for unsupported methods")
    post = requests.post(f"{base_url}/", timeout=5)
    print(f"   Status: {post.status_code} (Method Not Allowed)")
    print(f"   Allow header: {post.headers.get('Allow')}")
    print("\n" + "=" * 60)


def main():
    base_url = sys.argv[1] if len(sys.argv) > 1 else "http://localhost:8080"
    try:
        run_demo(base_url)
    except requests.exceptions.ConnectionError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        print("Make sure the server is running: python -m static_server", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
