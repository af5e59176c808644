"""Knowledge compilation pipeline: raw text to classified, embedded claims."""
