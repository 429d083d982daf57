"""Command-line interface for quantized text generation."""

import logging
import sys
from typing import List, Optional

from .cli_parts.common import (
    print_available_models,
    resolve_model_path,
    resolve_tokenizer_path,
    sampling_config_from_args,
    setup_logging,
)
from .cli_parts.output import print_run_header, print_session_summary
from .cli_parts.parser import create_parser
from .generation.conversation_handler import SingleShot, parse_mode
from .generation.session import GenerationSession
from .models.model_configs import get_model_config
from .models.model_policies import get_family_behavior
from .runtime.model_runtime import ModelEvaluationError, ModelRuntime
from .runtime.weight_loader import FormatError, load_container
from .utils.tokenizer import Tokenizer, TokenizerError


def main(argv: Optional[List[str]] = None) -> int:
    """Main CLI entry point."""
    parser = create_parser()
    args = parser.parse_args(argv)

    setup_logging(args.verbose)
    logger = logging.getLogger(__name__)

    if args.list_models:
        print_available_models()
        return 0

    if args.sample_len < 1:
        parser.error("--sample-len must be at least 1")
    if args.gqa is not None and args.gqa < 1:
        parser.error("--gqa must be a positive integer")

    try:
        print_run_header(args)
        sampling = sampling_config_from_args(args)
        model_config = get_model_config(args.which)
        family = get_family_behavior(model_config)

        model_path = resolve_model_path(args)
        descriptor = load_container(model_path, gqa=args.gqa, model_name=args.which)
        model = ModelRuntime(device=args.device).build(descriptor, model_path)

        tokenizer = Tokenizer.from_file(resolve_tokenizer_path(args), eos_token=family.eos_token)
        mode = parse_mode(args.prompt)
        session = GenerationSession(
            model=model,
            tokenizer=tokenizer,
            sampling=sampling,
            mode=mode,
            sample_len=args.sample_len,
            verbose_prompt=args.verbose_prompt,
            instruct_template=None if isinstance(mode, SingleShot) else family.instruct_template,
        )
        turns = session.run()
        print_session_summary(turns)

    except KeyboardInterrupt:
        logger.info("Generation interrupted by user")
        print("\nGeneration interrupted by user")
        return 130

    except (FormatError, TokenizerError, ModelEvaluationError, ValueError) as e:
        logger.error("Generation failed: %s", e)
        print(f"\nError: {e}")
        return 1

    except Exception as e:
        logger.error("Generation failed unexpectedly: %s", e, exc_info=True)
        print(f"\nError: {e}")
        return 1

    return 0


def run() -> None:
    """Entry point for setuptools console script."""
    sys.exit(main())


if __name__ == "__main__":
    run()
