"""
Avatar Composition Pipeline

Four stages driven by the CompositionHandler:
1. Fetch - download the avatar from the CDN
2. Decode - bytes to an RGBA pixel buffer
3. Composite - place the avatar onto a banner template
4. Encode - serialize the result for the response
"""
