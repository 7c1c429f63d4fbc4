"""Provider ports and adapters.

- ports: Protocols and result types the step executors depend on
- fal: fal.ai queue client (image, video)
- soniox: async speech-to-text
- storage: local filesystem and Cloudflare R2 object storage
- url_fetcher: fetches pages referenced in prompts
"""
