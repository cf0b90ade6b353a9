"""Command-line tooling for the signature verification core.

Subcommands:
    enroll       Enroll one raw signature image
    train        Enroll a batch from a JSON manifest (optionally replacing the set)
    verify       Verify a prescription / signature image against the enrolled set
    list         Show the enrolled reference set
    extract      Crop the signature region of a prescription into a training image
    fingerprint  Print the fingerprint of a (preprocessed) image
"""

from __future__ import annotations
import argparse
import json
from pathlib import Path
from typing import List, Optional

from rxsignature.config import STRICT_MATCH_THRESHOLD, HASH_WEIGHT, MAX_WORKERS
from rxsignature.enrollment import enroll, train_from_manifest
from rxsignature.exceptions import (
    DecodeError, DuplicateIdentifierError, EmptyReferenceSetError, SignatureVerificationError, StoreError,
)
from rxsignature.fingerprinting import fingerprint_file
from rxsignature.models import EnrollmentMetadata, VerificationSettings
from rxsignature.models_serialization import verdict_to_dict
from rxsignature.preprocessing import extract_signature_to_file
from rxsignature.signature_verifier import load_reference_set, verify_prescription_signature
from rxsignature.storage import open_store


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Prescription signature enrollment and verification.")
    parser.add_argument("--backend", choices=["json", "database"], default=None,
                        help="Reference store backend (default: configured STORE_BACKEND).")
    parser.add_argument("--store", type=Path, default=None,
                        help="Store file: JSON file or database file, depending on backend.")
    sub = parser.add_subparsers(dest="command", required=True)

    p_enroll = sub.add_parser("enroll", help="Enroll one raw signature image.")
    p_enroll.add_argument("image", type=Path, help="Raw signature image.")
    p_enroll.add_argument("--id", required=True, help="Stable identifier (licence number).")
    p_enroll.add_argument("--name", required=True, help="Doctor's display name.")
    p_enroll.add_argument("--email", default="")
    p_enroll.add_argument("--phone", default="")
    p_enroll.add_argument("--specialty", default="")
    p_enroll.add_argument("--hospital", default="", help="Hospital name.")
    p_enroll.add_argument("--from-prescription", action="store_true",
                          help="Crop the signature region out of a full prescription first.")

    p_train = sub.add_parser("train", help="Enroll a batch of signatures from a JSON manifest.")
    p_train.add_argument("manifest", type=Path, help="JSON array of {imagePath, doctorInfo} entries.")
    p_train.add_argument("--replace", action="store_true", help="Replace the whole enrolled set.")
    p_train.add_argument("--from-prescription", action="store_true",
                         help="Crop signature regions out of full prescriptions first.")

    p_verify = sub.add_parser("verify", help="Verify an image against the enrolled set.")
    p_verify.add_argument("image", type=Path, help="Prescription or signature image.")
    p_verify.add_argument("--threshold", type=float, default=STRICT_MATCH_THRESHOLD,
                          help="Acceptance threshold on the 0-100 confidence.")
    p_verify.add_argument("--hash-weight", type=float, default=HASH_WEIGHT,
                          help="Weight of the hash score (pixel weight is 1 - hash weight).")
    p_verify.add_argument("--workers", type=int, default=MAX_WORKERS,
                          help="Processes used for large reference sets.")
    p_verify.add_argument("--include-inactive", action="store_true",
                          help="Also compare against references marked inactive.")
    p_verify.add_argument("--json", action="store_true", help="Print the verdict as JSON.")

    sub.add_parser("list", help="List enrolled references.")

    p_extract = sub.add_parser("extract", help="Crop a prescription's signature region to a file.")
    p_extract.add_argument("prescription", type=Path)
    p_extract.add_argument("output", type=Path)

    p_fp = sub.add_parser("fingerprint", help="Print an image's fingerprint.")
    p_fp.add_argument("image", type=Path)

    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)

    if args.command == "extract":
        try:
            output = extract_signature_to_file(args.prescription, args.output)
        except DecodeError as exc:
            raise SystemExit(f"[error] {exc}") from exc
        print(f"[info] Signature region saved to {output}")
        return 0

    if args.command == "fingerprint":
        try:
            print(fingerprint_file(args.image))
        except DecodeError as exc:
            raise SystemExit(f"[error] {exc}") from exc
        return 0

    try:
        with open_store(args.backend, args.store) as store:
            return _run_store_command(args, store)
    except StoreError as exc:
        raise SystemExit(f"[error] {exc}") from exc


def _run_store_command(args: argparse.Namespace, store) -> int:
    """enroll / train / list / verify against an open reference store."""
    if args.command == "enroll":
        metadata = EnrollmentMetadata(
            id=args.id, name=args.name, email=args.email, phone=args.phone,
            specialty=args.specialty, hospital_name=args.hospital,
        )
        try:
            reference = enroll(args.image, metadata, store, extract_region=args.from_prescription)
        except DuplicateIdentifierError as exc:
            raise SystemExit(f"[error] {exc}. Re-train with --replace to overwrite the set.") from exc
        except SignatureVerificationError as exc:
            raise SystemExit(f"[error] {exc}") from exc
        print(f"[info] Enrolled {reference.id} ({reference.display_name})")
        print(f"       fingerprint: {reference.fingerprint}")
        print(f"       image:       {reference.reference_image_path}")
        return 0

    if args.command == "train":
        try:
            summary = train_from_manifest(args.manifest, store, replace=args.replace,
                                          extract_region=args.from_prescription)
        except (OSError, ValueError) as exc:
            raise SystemExit(f"[error] Cannot read manifest: {exc}") from exc
        print(f"[info] Trained {summary.success_count}/{summary.total} signatures into {store!r}")
        for label, error in summary.failed:
            print(f"[warning] {label}: {error}")
        return 0 if not summary.failed else 1

    if args.command == "list":
        references = load_reference_set(store, active_only=False)
        if not references:
            print("No reference signatures enrolled.")
            return 0
        for reference in references:
            state = "active" if reference.is_active else "inactive"
            print(f"{reference.id:15s} | {reference.display_name:25s} | {state:8s} | {reference.fingerprint}")
        return 0

    # verify
    try:
        settings = VerificationSettings(
            threshold=args.threshold,
            hash_weight=args.hash_weight,
            pixel_weight=1.0 - args.hash_weight,
            max_workers=max(1, args.workers),
        )
    except ValueError as exc:
        raise SystemExit(f"[error] {exc}") from exc

    references = load_reference_set(store, active_only=not args.include_inactive)
    try:
        verdict = verify_prescription_signature(args.image, references, settings)
    except EmptyReferenceSetError as exc:
        raise SystemExit(f"[error] {exc}. Enroll references first (enroll / train).") from exc
    except DecodeError as exc:
        raise SystemExit(f"[error] {exc}") from exc

    if args.json:
        print(json.dumps(verdict_to_dict(verdict), indent=2))
    else:
        label = "ACCEPT" if verdict.verified else "REJECT"
        match = verdict.matched_reference
        who = f"{match.id} ({match.name})" if match else "none"
        print(f"Verification result: {label} (confidence={verdict.confidence}, best={who})")
        print(verdict.detail)
    return 0 if verdict.verified else 2


if __name__ == "__main__":
    raise SystemExit(main())
