import argparse
import os
import sys
import time
from typing import List, Optional

import matplotlib.pyplot as plt

from cbdrank import config
from cbdrank.backend import get_backend
from cbdrank.data_loader import load_inputs
from cbdrank.errors import CbdRankError
from cbdrank.karma import SPLIT_MODES
from cbdrank.pipeline import calculate_rank, top_k


def plot_convergence(convergence_history: list, save_path: str, tolerance: float) -> None:
    """
    Plot rank convergence and save to file.

    Args:
        convergence_history: Max abs rank change per iteration
        save_path: Path to save the plot image
        tolerance: Convergence tolerance drawn as a threshold line
    """
    plt.figure(figsize=(10, 6))

    iterations = list(range(1, len(convergence_history) + 1))

    plt.plot(iterations, convergence_history, 'b-', linewidth=2, marker='o', markersize=3)
    plt.xlabel('Iteration', fontsize=12)
    plt.ylabel('Max Change from Previous Iteration', fontsize=12)
    plt.title('Rank Convergence', fontsize=14)
    plt.yscale('log')
    plt.grid(True, alpha=0.3)

    plt.axhline(y=tolerance, color='r', linestyle='--', label=f'Convergence threshold ({tolerance:g})')
    plt.legend()

    plt.tight_layout()
    plt.savefig(save_path, dpi=150, bbox_inches='tight')
    plt.close()

    print(f"Convergence plot saved to: {save_path}")


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Compute rank, entropy, luminosity and karma for a content graph.")
    p.add_argument("--links", required=True, help="CSV of content links with 'source' and 'target' columns")
    p.add_argument("--ownership", default="", help="CSV with 'stakeholder' and 'cid' columns")
    p.add_argument("--stakes", default="", help="CSV with 'stakeholder' and 'stake' columns")
    p.add_argument("--damping", type=float, default=config.DAMPING_FACTOR, help="Damping factor (default: %(default)s)")
    p.add_argument("--tolerance", type=float, default=config.TOLERANCE, help="Convergence tolerance (default: %(default)s)")
    p.add_argument("--max-iterations", type=int, default=config.MAX_ITERATIONS, help="Iteration bound (default: %(default)s)")
    p.add_argument("--backend", default=config.BACKEND, choices=["auto", "numpy", "cupy"], help="Compute backend (default: %(default)s)")
    p.add_argument("--workers", type=int, default=config.WORKERS, help="Worker threads for the numpy backend (default: %(default)s)")
    p.add_argument("--karma-split", default="full", choices=list(SPLIT_MODES), help="Rank credit for co-owned content (default: %(default)s)")
    p.add_argument("--scale-by-stake", action="store_true", help="Multiply karma by each stakeholder's share of total stake")
    p.add_argument("--output-dir", default="results", help="Output directory (default: %(default)s)")
    p.add_argument("--top-k", type=int, default=10, help="Number of top content items to print (default: %(default)s)")
    p.add_argument("--plot-convergence", action="store_true", help="Save a convergence plot to the output directory")
    p.add_argument("--accept-partial", action="store_true", help="Keep the best-effort result if rank does not converge")
    return p.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    os.makedirs(args.output_dir, exist_ok=True)

    try:
        start = time.perf_counter()
        graph, vid_df, ownership, sid_df, stakes = load_inputs(
            args.links,
            ownership_path=args.ownership or None,
            stakes_path=args.stakes or None,
        )
        print(f"Data loading: {time.perf_counter() - start:.3f}s")

        with get_backend(args.backend, workers=args.workers) as backend:
            print(f"Compute backend: {backend.describe()}")
            result = calculate_rank(
                graph,
                ownership,
                stakes,
                damping_factor=args.damping,
                tolerance=args.tolerance,
                max_iterations=args.max_iterations,
                backend=backend,
                karma_split=args.karma_split,
                scale_by_stake=args.scale_by_stake,
                fail_on_nonconvergence=not args.accept_partial,
                verbose=True,
            )
    except (CbdRankError, FileNotFoundError, ValueError) as e:
        print(f"Error: {e}")
        return 1

    if not result.rank_result.converged:
        print(f"Warning: using best-effort rank after {result.rank_result.iterations} iterations")

    scores_df, karma_df = result.to_frames(vid_df, sid_df)
    scores_path = os.path.join(args.output_dir, 'scores.csv')
    karma_path = os.path.join(args.output_dir, 'karma.csv')
    scores_df.to_csv(scores_path, index=False)
    karma_df.to_csv(karma_path, index=False)
    print(f"Scores saved to: {scores_path}")
    print(f"Karma saved to: {karma_path}")

    if args.plot_convergence:
        plot_path = os.path.join(args.output_dir, 'rank_convergence.png')
        plot_convergence(result.rank_result.history, plot_path, args.tolerance)

    print(top_k(scores_df, args.top_k))
    return 0


if __name__ == '__main__':
    sys.exit(main())
