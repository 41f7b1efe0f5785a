"""Visualization utilities for registration results."""

import logging

import matplotlib.pyplot as plt
import numpy as np
import open3d as o3d

logger = logging.getLogger(__name__)


def plot_convergence(result, save_path='icp_convergence.png', show=False):
    """
    Plot fitness and inlier RMSE over the ICP iterations.

    Args:
        result: RegistrationResult carrying a history
        save_path: Path to save the plot, or None to skip saving
        show: Whether to open an interactive window

    Returns:
        The matplotlib Figure
    """
    history = np.asarray(result.history, dtype=np.float64).reshape(-1, 2)
    iterations = np.arange(len(history))

    fig, (ax_fitness, ax_rmse) = plt.subplots(1, 2, figsize=(14, 6))

    ax_fitness.plot(iterations, history[:, 0], marker='o', linewidth=2, markersize=4,
                    color='#2E86AB', label='Fitness')
    ax_fitness.set_xlabel('Iteration', fontsize=12)
    ax_fitness.set_ylabel('Fitness', fontsize=12)
    ax_fitness.set_ylim(0.0, 1.05)
    ax_fitness.set_title('Fitness', fontsize=14, fontweight='bold')
    ax_fitness.grid(True, alpha=0.3)

    ax_rmse.plot(iterations, history[:, 1], marker='o', linewidth=2, markersize=4,
                 color='#C73E1D', label='Inlier RMSE')
    ax_rmse.set_xlabel('Iteration', fontsize=12)
    ax_rmse.set_ylabel('Inlier RMSE', fontsize=12)
    ax_rmse.set_title('Inlier RMSE', fontsize=14, fontweight='bold')
    ax_rmse.grid(True, alpha=0.3)

    if len(history):
        fig.suptitle(f"ICP Convergence ({result.num_iterations} iterations)\n"
                     f"Fitness: {history[0, 0]:.4f} → {history[-1, 0]:.4f}   "
                     f"RMSE: {history[0, 1]:.4f} → {history[-1, 1]:.4f}")

    fig.tight_layout()
    if save_path is not None:
        fig.savefig(save_path, dpi=150)
        logger.info("Convergence plot saved to '%s'", save_path)
    if show:
        plt.show()
    return fig


def draw_registration_result(source, target, transformation, window_name="Registration Result"):
    """
    Show source (red) aligned by ``transformation`` over target (blue).

    Clouds that carry colors keep them.
    """
    source_pcd = source.to_o3d()
    target_pcd = target.to_o3d()
    source_pcd.transform(np.asarray(transformation, dtype=np.float64))

    if source.colors is None:
        source_pcd.paint_uniform_color([1, 0, 0])
    if target.colors is None:
        target_pcd.paint_uniform_color([0, 0, 1])

    o3d.visualization.draw_geometries(
        [source_pcd, target_pcd],
        window_name=window_name,
        width=1024,
        height=768
    )
