"""
Run Enrollment - Admin Script
Interactive first-time enrollment, or the rxsignature command line when arguments are given.
"""

import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent))

from rxsignature.cli import main as cli_main
from rxsignature.enrollment import enroll
from rxsignature.exceptions import SignatureVerificationError
from rxsignature.models import EnrollmentMetadata
from rxsignature.storage import open_store


def first_time_setup():
    """Interactive enrollment of the first reference signatures."""
    print("=" * 70)
    print("PRESCRIPTION SIGNATURES - FIRST-TIME ENROLLMENT")
    print("=" * 70)
    print()

    with open_store() as store:
        while True:
            image = input("Signature image (empty to finish): ").strip()
            if not image:
                break
            reference_id = input("  Licence number: ").strip()
            name = input("  Doctor name: ").strip()
            if not reference_id or not name:
                print("  ⚠ Licence number and name are required!")
                continue
            from_prescription = input("  Is this a full prescription? [y/N]: ").lower() == 'y'

            try:
                reference = enroll(
                    image,
                    EnrollmentMetadata(id=reference_id, name=name),
                    store,
                    extract_region=from_prescription,
                )
            except SignatureVerificationError as e:
                print(f"  ✗ {e}")
                continue
            print(f"  ✓ Enrolled {reference.id} ({reference.display_name})")
            print()

        count = len(store.load_all())

    print()
    print("=" * 70)
    print(f"✅ {count} reference signature(s) enrolled")
    print("=" * 70)


def main():
    if len(sys.argv) > 1:
        return cli_main(sys.argv[1:])
    try:
        first_time_setup()
    except KeyboardInterrupt:
        print("\n\nAborted.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
