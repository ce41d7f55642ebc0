from cryptopay.tasks.confirmation_tasks import run_confirmation_sweep

__all__ = [
    'run_confirmation_sweep',
]
