"""Deployment to Cloudflare Workers with R2-hosted assets."""
