#!/usr/bin/env python3
"""Terminal chat against a running server: each line you type is posted as a
signed WhatsApp webhook delivery, and the pipeline's outcome is printed."""
import argparse, json, os, sys, time, uuid

import requests

from app.security import SIGNATURE_HEADER, sign


def _envelope(value):
    return {
        "object": "whatsapp_business_account",
        "entry": [{
            "id": "cli-waba",
            "changes": [{"field": "messages", "value": {
                "messaging_product": "whatsapp",
                "metadata": {"display_phone_number": "15550000000", "phone_number_id": "cli-phone"},
                **value,
            }}],
        }],
    }


def text_message_payload(sender, text, name=None, message_id=None, ts=None):
    """Inbound text message delivery as the Cloud API sends it."""
    value = {
        "messages": [{
            "from": sender,
            "id": message_id or f"wamid.cli-{uuid.uuid4().hex[:12]}",
            "timestamp": str(int(ts if ts is not None else time.time())),
            "type": "text",
            "text": {"body": text},
        }],
    }
    if name:
        value["contacts"] = [{"wa_id": sender, "profile": {"name": name}}]
    return _envelope(value)


def status_payload(message_id, status, recipient="", ts=None, errors=None):
    """Delivery receipt for an outgoing message."""
    st = {
        "id": message_id,
        "status": status,
        "timestamp": str(int(ts if ts is not None else time.time())),
        "recipient_id": recipient,
    }
    if errors:
        st["errors"] = errors
    return _envelope({"statuses": [st]})


def post_signed(base, payload, secret, timeout=30):
    body = json.dumps(payload).encode("utf-8")
    headers = {"Content-Type": "application/json"}
    if secret:
        headers[SIGNATURE_HEADER] = sign(body, secret)
    r = requests.post(f"{base}/webhook/whatsapp", data=body, headers=headers, timeout=timeout)
    if r.headers.get("content-type", "").startswith("application/json"):
        return r.status_code, r.json()
    return r.status_code, {"text": r.text}


def main():
    p = argparse.ArgumentParser(description="Simulate a WhatsApp customer chatting with the auto-reply bot.")
    p.add_argument("--base", default="http://localhost:8000", help="API base URL")
    p.add_argument("--phone", required=True, help="Sender number as WhatsApp sends it (e.g. 15551234567)")
    p.add_argument("--name", default=None, help="Profile name attached to the delivery")
    p.add_argument("--secret", default=os.getenv("WHATSAPP_APP_SECRET", ""), help="App secret used to sign")
    p.add_argument("--status", nargs=2, metavar=("WAMID", "STATUS"),
                   help="Send a single status receipt (sent/delivered/read/failed) and exit")
    args = p.parse_args()

    if not args.secret:
        print("[warn] no app secret: the server will reject unsigned deliveries")

    if args.status:
        code, resp = post_signed(args.base, status_payload(args.status[0], args.status[1], args.phone), args.secret)
        print(f"[server HTTP {code}] {resp}")
        sys.exit(0 if code == 200 else 1)

    print("\nType a message and hit Enter. Ctrl+C to quit.\n")
    while True:
        try:
            text = input(f"[{args.phone}] ").strip()
            if not text:
                continue
            try:
                code, resp = post_signed(args.base, text_message_payload(args.phone, text, args.name), args.secret)
            except requests.RequestException as e:
                print(f"[request error] {e}")
                continue
            if code != 200:
                print(f"[server HTTP {code}] {resp}")
                continue
            for o in resp.get("outcomes", []):
                print(f"[BOT] {o['kind']} {o['id']}: {o['outcome']}")
            if not resp.get("ok"):
                print(f"[BOT] rejected: {resp.get('error')}")
        except (KeyboardInterrupt, EOFError):
            print("\nBye!")
            break

if __name__ == "__main__":
    main()
