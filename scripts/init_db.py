"""Create the media pipeline schema and optionally seed a demo session."""

import argparse
import logging

from src.media_pipeline.config import load_config
from src.media_pipeline.logging import configure_logging
from src.media_pipeline.media.media_models import MediaRef
from src.media_pipeline.repositories.ai_config_repository import AiConfigRepository
from src.media_pipeline.repositories.session_repository import SessionRepository

logger = logging.getLogger("scripts.init_db")


def main() -> None:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--seed-session", help="create a pending session with this id")
    parser.add_argument("--project-id", default="demo-project")
    parser.add_argument("--experience-id", default="demo-experience")
    parser.add_argument("--input-path", help="store-relative path of the captured image")
    parser.add_argument("--ai-prompt", help="store an AI configuration for the experience")
    args = parser.parse_args()

    configure_logging()
    config = load_config()
    logger.info("db.initialized", extra={"database_url": config.database_url})

    if args.ai_prompt:
        AiConfigRepository(config.session_factory).upsert(
            experience_id=args.experience_id,
            provider="google",
            model="gemini-2.5-flash-image",
            prompt=args.ai_prompt,
        )
        logger.info("db.seeded.ai_config", extra={"experience_id": args.experience_id})

    if args.seed_session:
        assets = []
        if args.input_path:
            size = (config.media_paths.root / args.input_path).stat().st_size
            assets.append(MediaRef(path=args.input_path, mime_type="image/jpeg", size_bytes=size))
        SessionRepository(config.session_factory).create_session(
            session_id=args.seed_session,
            project_id=args.project_id,
            experience_id=args.experience_id,
            input_assets=assets,
        )
        logger.info("db.seeded.session", extra={"session_id": args.seed_session})


if __name__ == "__main__":
    main()
