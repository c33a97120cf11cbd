"""CLI entry point for vote guard.

Usage:
    vote-guard download-models [--force]
    vote-guard check
    vote-guard verify --award ID [--nominee ID] [--strategy NAME] [--token TOKEN]
"""

import argparse
import asyncio
import logging
import os
import sys
from pathlib import Path

from . import __version__

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def cmd_download_models(args):
    """Download the face detection and recognition models."""
    from .biometrics.models import MODEL_ASSETS, ModelStore
    from .errors import ModelLoadError

    store = ModelStore()
    assets = MODEL_ASSETS if args.force else store.missing()
    if not assets:
        logger.info(f"✓ All models present in {store.model_dir}")
        return

    for i, asset in enumerate(assets, 1):
        logger.info(f"[{i}/{len(assets)}] {asset.filename}")
        try:
            store.download(asset)
        except ModelLoadError as e:
            logger.error(f"✗ {e}")
            sys.exit(1)

    logger.info(f"✓ Models saved to {store.model_dir}")


def cmd_check(args):
    """Check models, camera and platform authenticator."""
    from .api.client import ApiClient
    from .biometrics.camera import OpenCVCamera
    from .biometrics.engine import FaceEmbeddingEngine
    from .biometrics.models import ModelStore
    from .errors import CameraError, ModelLoadError
    from .webauthn import Fido2PlatformAuthenticator, WebAuthnBridge

    results = []

    # Models
    logger.info("[1/3] Face models...")
    store = ModelStore()
    missing = store.missing()
    if missing:
        logger.warning(f"  Missing: {', '.join(a.filename for a in missing)}")
        results.append(("Face models", False))
    else:
        try:
            FaceEmbeddingEngine(model_store=store).initialize()
            logger.info("  ✓ Models loaded")
            results.append(("Face models", True))
        except ModelLoadError as e:
            logger.error(f"  ✗ {e}")
            results.append(("Face models", False))

    # Camera
    logger.info("[2/3] Camera...")
    try:
        with OpenCVCamera() as camera:
            frame = camera.read()
            ok = frame is not None
            if ok:
                logger.info(f"  ✓ Camera frame {frame.shape[1]}x{frame.shape[0]}")
        results.append(("Camera", ok))
    except CameraError as e:
        from .messages import camera_error_message
        logger.error(f"  ✗ {camera_error_message(e)}")
        results.append(("Camera", False))

    # Platform authenticator
    logger.info("[3/3] Platform authenticator...")
    bridge = WebAuthnBridge(ApiClient(), Fido2PlatformAuthenticator())
    report = bridge.compatibility()
    available = bridge.is_platform_authenticator_available()
    logger.info(f"  Platform: {report.platform_info}, supported={report.is_supported}, available={available}")
    for recommendation in report.recommendations:
        logger.info(f"  - {recommendation}")
    results.append(("Platform authenticator", available))

    # Summary
    passed = sum(1 for _, ok in results if ok)
    logger.info(f"Result: {passed}/{len(results)} components OK")


def cmd_verify(args):
    """Run biometric verification, optionally submitting a vote."""
    from .api.client import ApiClient
    from .errors import AuthenticationError, VoteSubmissionError
    from .verification import build_verifier
    from .voting import VoteSubmitter

    token = args.token or os.environ.get("VOTE_GUARD_TOKEN")
    api = ApiClient(base_url=args.api_url, access_token=token)
    verifier = build_verifier(api, strategy=args.strategy)

    try:
        subject_id = args.user or api.get_current_user().user_id
    except AuthenticationError:
        logger.error("Please sign in to continue (pass --token or set VOTE_GUARD_TOKEN)")
        sys.exit(1)

    if args.nominee:
        submitter = VoteSubmitter(api, verifier)
        try:
            asyncio.run(submitter.submit_with_verification(args.award, args.nominee, subject_id))
        except VoteSubmissionError as e:
            logger.error(f"✗ {e.message}")
            sys.exit(1)
        except AuthenticationError:
            logger.error("Session expired. Please sign in again.")
            sys.exit(1)
        logger.info("✓ Your vote has been successfully submitted!")
        return

    outcome = asyncio.run(verifier.verify(args.award, subject_id))
    if not outcome.success:
        logger.error(f"✗ {outcome.message}")
        if outcome.next_action:
            logger.info(f"  Try: {outcome.next_action}")
        sys.exit(1)
    logger.info(f"✓ {outcome.message}")


def main():
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        prog="vote-guard",
        description="Biometric duplicate-vote prevention client",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  vote-guard download-models                 Fetch face models
  vote-guard check                           Check models, camera, authenticator
  vote-guard verify --award A1               Verify face for award A1
  vote-guard verify --award A1 --nominee N1  Verify and vote
        """,
    )

    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("-c", "--config", help="Config file")
    parser.add_argument("-d", "--debug", action="store_true", help="Debug mode")

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # download-models
    dl_p = subparsers.add_parser("download-models", help="Download face models")
    dl_p.add_argument("-f", "--force", action="store_true", help="Re-download existing files")

    # check
    subparsers.add_parser("check", help="Check components")

    # verify
    verify_p = subparsers.add_parser("verify", help="Biometric verification")
    verify_p.add_argument("-a", "--award", required=True, help="Award id")
    verify_p.add_argument("-n", "--nominee", help="Nominee id; submits the vote after verification")
    verify_p.add_argument("-u", "--user", help="User id (default: the signed-in user)")
    verify_p.add_argument("-s", "--strategy", choices=["facial", "webauthn", "none"],
                          help="Verification strategy (default: from config)")
    verify_p.add_argument("-t", "--token", help="Access token (default: $VOTE_GUARD_TOKEN)")
    verify_p.add_argument("--api-url", help="API base URL (default: from config)")

    args = parser.parse_args()

    if args.command is None:
        parser.print_help()
        sys.exit(0)

    if args.debug:
        logging.getLogger().setLevel(logging.DEBUG)

    if args.config:
        from .constants import get_config
        get_config().reload(Path(args.config))

    commands = {
        "download-models": cmd_download_models,
        "check": cmd_check,
        "verify": cmd_verify,
    }

    commands[args.command](args)


if __name__ == "__main__":
    main()
