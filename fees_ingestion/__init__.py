"""Translation of mobile-money gateway callbacks into payment notifications."""
