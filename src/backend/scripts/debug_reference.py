#!/usr/bin/env python3
"""
Debug script to see which grammar picks up a reference, and what amount,
from a pasted receipt/confirmation text or a receipt screenshot.

Usage:
    python scripts/debug_reference.py "Confirmado CI81H2KX1Z. Transferiste..."
    python scripts/debug_reference.py --image receipt.jpg
    python scripts/debug_reference.py --pending
"""

import argparse
import mimetypes
import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from dotenv import load_dotenv

load_dotenv()

from megaledger.services.parser import ReferenceParser
from megaledger.services.pending import PendingReceiptStore
from megaledger.services.storage import build_blob_store


def show_text(parser: ReferenceParser, text: str):
    print("="*60)
    print("INPUT TEXT:")
    print("-"*60)
    print(text)
    print("-"*60)

    parsed = parser.extract_reference(text)
    if parsed:
        print(f"Reference: {parsed.reference}")
        print(f"  Raw:      {parsed.raw!r}")
        print(f"  Network:  {parsed.reference_type.value}")
        print(f"  Pattern:  {parsed.pattern_name}")
    else:
        print("Reference: NOT FOUND")

    amount = parser.extract_amount(text)
    print(f"Amount:    {f'{amount} MB' if amount else 'NOT FOUND'}")


def show_image(parser: ReferenceParser, path: str):
    from megaledger.services.ocr import OCRService

    mime_type = mimetypes.guess_type(path)[0] or 'image/jpeg'
    with open(path, 'rb') as f:
        data = f.read()

    text = OCRService().extract_text_from_image(data, mime_type)
    print("EXTRACTED TEXT:")
    print("-"*60)
    print(text or "(nothing)")
    print("-"*60)

    parsed = parser.reference_from_ocr(text)
    print(f"Reference: {parsed.reference if parsed else 'NOT FOUND'}")


def show_pending():
    store = PendingReceiptStore(build_blob_store())
    store.load()
    current = store.now()

    print(f"{len(store)} pending receipt(s)")
    for receipt in store.all():
        age = int((current - receipt.captured_at).total_seconds())
        print(f"  {receipt.normalized_reference:<24} {receipt.reference_type.value:<7} "
              f"{receipt.display_name} ({receipt.sender_id}) group={receipt.group_id} age={age}s")


def main():
    arg_parser = argparse.ArgumentParser(description="Inspect reference extraction")
    arg_parser.add_argument("text", nargs="?", help="Message text to parse")
    arg_parser.add_argument("--image", help="Receipt screenshot to OCR")
    arg_parser.add_argument("--pending", action="store_true", help="List stored pending receipts")
    args = arg_parser.parse_args()

    parser = ReferenceParser()

    if args.pending:
        show_pending()
    elif args.image:
        show_image(parser, args.image)
    elif args.text:
        show_text(parser, args.text)
    else:
        show_text(parser, sys.stdin.read())


if __name__ == "__main__":
    main()
