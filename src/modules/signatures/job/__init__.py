from .reminder_job import start_signature_jobs, stop_signature_jobs
