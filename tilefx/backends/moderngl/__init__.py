"""ModernGL display backend for the compositor's default framebuffer."""
