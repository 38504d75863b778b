DEFAULT_STEP_TIMEOUT = 60.0
DEFAULT_THREADS = 1
SHELL_SANDBOX_ENV = "PROMPTRUN_SHELL_SANDBOXED"
