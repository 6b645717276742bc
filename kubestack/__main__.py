"""Allow ``python -m kubestack``."""

from kubestack.cli import main

if __name__ == "__main__":
    main()
